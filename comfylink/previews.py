"""Revocable preview image handles.

A preview handle wraps the raw bytes of one binary frame and is addressable
by a `preview://<id>` URL until it is revoked.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from comfylink.errors import ResourceError

log = logging.getLogger("comfylink.previews")

PREVIEW_SCHEME = "preview://"

# Binary frames from the backend may carry an 8-byte header
# (event type + image format) ahead of the image itself.
_HEADER_LEN = 8

_MIME_BY_MAGIC: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"RIFF", "image/webp"),
    (b"GIF8", "image/gif"),
)


def sniff_mime(data: bytes) -> str:
    for offset in (0, _HEADER_LEN):
        chunk = data[offset:]
        for magic, mime in _MIME_BY_MAGIC:
            if chunk.startswith(magic):
                return mime
    return "application/octet-stream"


@dataclass
class PreviewHandle:
    url: str
    data: bytes = field(repr=False)
    mime: str = "application/octet-stream"
    revoked: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class PreviewRegistry:
    """Owns every live preview handle and resolves URLs back to bytes."""

    def __init__(self) -> None:
        self._live: dict[str, PreviewHandle] = {}

    def create(self, data: bytes) -> PreviewHandle:
        if not isinstance(data, (bytes, bytearray)):
            raise ResourceError(f"preview data must be bytes, got {type(data).__name__}")
        handle = PreviewHandle(
            url=f"{PREVIEW_SCHEME}{uuid.uuid4().hex}",
            data=bytes(data),
            mime=sniff_mime(data),
        )
        self._live[handle.url] = handle
        return handle

    def revoke(self, handle: PreviewHandle | str) -> bool:
        """Revoke a handle (or its URL). Returns False if it was not live."""
        url = handle if isinstance(handle, str) else handle.url
        live = self._live.pop(url, None)
        if live is None:
            return False
        live.revoked = True
        live.data = b""
        return True

    def resolve(self, url: str) -> PreviewHandle | None:
        return self._live.get(url)

    def live_count(self) -> int:
        return len(self._live)
