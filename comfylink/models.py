"""Command response shapes."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PromptQueued:
    prompt_id: str
    number: int
    node_errors: dict = field(default_factory=dict)  # {node_id: {errors, ...}}


@dataclass(frozen=True)
class UploadedImage:
    name: str
    subfolder: str = ""
    type: str = "input"


@dataclass(frozen=True)
class Device:
    name: str
    type: str  # "cuda" | "cpu" | ...
    index: int
    vram_total: int
    vram_free: int


@dataclass(frozen=True)
class SystemStats:
    os: str
    python_version: str
    embedded_python: bool = False
    devices: list[Device] = field(default_factory=list)
    raw: dict = field(default_factory=dict, repr=False)
