"""Backend event types and frame normalization.

Text frames arrive as `{"type": ..., "data": ...}` envelopes whose `data`
shape is backend-internal. `normalize_envelope` reduces each recognized tag to
a small, stable event so downstream code never reads the raw structure.
Binary frames are preview images and pass through untouched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Union

from comfylink.errors import ProtocolError

log = logging.getLogger("comfylink.events")


@dataclass(frozen=True)
class QueueStatus:
    queue_remaining: int = 0


@dataclass(frozen=True)
class Progress:
    value: float
    max: float


@dataclass(frozen=True)
class Executing:
    node: str | None  # None once the backend has finished the prompt


@dataclass(frozen=True)
class ExecutionStart:
    prompt_id: str | None


@dataclass(frozen=True)
class ExecutionSuccess:
    data: object = None


@dataclass(frozen=True)
class ExecutionError:
    data: object = None


@dataclass(frozen=True)
class PreviewFrame:
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class Disconnected:
    """The transport closed without being asked to."""


Event = Union[
    QueueStatus,
    Progress,
    Executing,
    ExecutionStart,
    ExecutionSuccess,
    ExecutionError,
    PreviewFrame,
    Disconnected,
]

EVENT_TYPES: tuple[type, ...] = (
    QueueStatus,
    Progress,
    Executing,
    ExecutionStart,
    ExecutionSuccess,
    ExecutionError,
    PreviewFrame,
    Disconnected,
)

Frame = Union[bytes, str]


def _preview(payload: object, limit: int = 200) -> str:
    text = payload if isinstance(payload, str) else repr(payload)
    return text[:limit]


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize_status(data: object) -> QueueStatus:
    remaining: object = 0
    if isinstance(data, dict):
        status = data.get("status")
        if isinstance(status, dict):
            exec_info = status.get("exec_info")
            if isinstance(exec_info, dict):
                remaining = exec_info.get("queue_remaining", 0)
    if not _is_number(remaining) or remaining < 0:
        remaining = 0
    return QueueStatus(queue_remaining=int(remaining))


def _normalize_progress(data: object) -> Progress:
    if not isinstance(data, dict):
        raise ProtocolError("progress without data", payload_preview=_preview(data))
    value = data.get("value")
    max_value = data.get("max")
    if not _is_number(value) or not _is_number(max_value):
        raise ProtocolError("progress without numeric value/max", payload_preview=_preview(data))
    return Progress(value=value, max=max_value)


def _normalize_executing(data: object) -> Executing:
    if not isinstance(data, dict) or "node" not in data:
        raise ProtocolError("executing without node", payload_preview=_preview(data))
    node = data.get("node")
    if node is not None and not isinstance(node, str):
        node = str(node)
    return Executing(node=node)


def _normalize_execution_start(data: object) -> ExecutionStart:
    prompt_id = data.get("prompt_id") if isinstance(data, dict) else None
    if not isinstance(prompt_id, str) or not prompt_id:
        prompt_id = None
    return ExecutionStart(prompt_id=prompt_id)


_NORMALIZERS: dict[str, Callable[[object], Event]] = {
    "status": _normalize_status,
    "progress": _normalize_progress,
    "executing": _normalize_executing,
    "execution_start": _normalize_execution_start,
    "execution_success": lambda data: ExecutionSuccess(data=data),
    "execution_error": lambda data: ExecutionError(data=data),
}


def normalize_envelope(envelope: object) -> Event | None:
    """Map a parsed envelope to an event.

    Returns None for tags we don't consume. Raises ProtocolError when a
    recognized tag carries unusable data.
    """
    if not isinstance(envelope, dict):
        raise ProtocolError("envelope is not an object", payload_preview=_preview(envelope))

    event_type = envelope.get("type")
    if not isinstance(event_type, str):
        raise ProtocolError("envelope without type", payload_preview=_preview(envelope))

    normalizer = _NORMALIZERS.get(event_type)
    if normalizer is None:
        return None
    return normalizer(envelope.get("data"))


class FrameDemultiplexer:
    """Turns raw websocket frames into events, in arrival order."""

    def __init__(self, publish: Callable[[Event], None]):
        self._publish = publish

    def feed(self, frame: Frame) -> None:
        if isinstance(frame, (bytes, bytearray, memoryview)):
            self._publish(PreviewFrame(data=bytes(frame)))
            return

        try:
            envelope = json.loads(frame)
        except (json.JSONDecodeError, TypeError) as e:
            err = ProtocolError(f"invalid JSON: {e}", payload_preview=_preview(frame))
            log.warning(f"Dropping frame: {err}")
            return

        try:
            event = normalize_envelope(envelope)
        except ProtocolError as e:
            log.warning(f"Dropping frame: {e}")
            return

        if event is None:
            log.debug(f"Ignoring frame type {envelope.get('type')!r}")
            return
        self._publish(event)

    def closed(self) -> None:
        self._publish(Disconnected())
