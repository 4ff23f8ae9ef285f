"""Account directory collaborator.

The session only needs two questions answered: does an identity exist, and
register a new one. `FolderAccountDirectory` keeps one folder per account.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

from comfylink.errors import AccountExistsError

log = logging.getLogger("comfylink.accounts")

_VALID_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")


class AccountDirectory(Protocol):
    def exists(self, identity: str) -> bool: ...

    def create(self, identity: str) -> None: ...


def validate_identity(identity: str) -> str:
    name = (identity or "").strip()
    if not _VALID_NAME.match(name):
        raise ValueError(f"invalid identity: {identity!r}")
    return name


class FolderAccountDirectory:
    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def _path(self, identity: str) -> Path:
        return self.base_dir / validate_identity(identity)

    def exists(self, identity: str) -> bool:
        try:
            return self._path(identity).is_dir()
        except ValueError:
            return False

    def create(self, identity: str) -> None:
        path = self._path(identity)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        try:
            path.mkdir()
        except FileExistsError as e:
            raise AccountExistsError(f"identity already exists: {identity}") from e
        log.info(f"Created account folder {path}")
