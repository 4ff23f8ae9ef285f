"""comfylink exceptions.

These exception types let the session layer and CLI format failures
consistently without scraping strings.
"""

from __future__ import annotations


class ComfyLinkError(RuntimeError):
    """Base class for comfylink errors."""


class TransportError(ComfyLinkError):
    """Websocket handshake or connection failure."""

    def __init__(self, message: str, *, url: str | None = None):
        self.message = message
        self.url = url
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.url:
            return f"Transport error ({self.url}): {self.message}"
        return f"Transport error: {self.message}"


class ProtocolError(ComfyLinkError):
    """Malformed/invalid frame content from the backend."""

    def __init__(self, message: str, *, payload_preview: str | None = None):
        self.message = message
        self.payload_preview = payload_preview
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.payload_preview:
            return f"Protocol error: {self.message} (payload={self.payload_preview!r})"
        return f"Protocol error: {self.message}"


class CommandError(ComfyLinkError):
    """Non-success response (or unusable request) for a backend command."""

    def __init__(
        self,
        status: int | None,
        *,
        method: str,
        url: str,
        detail: str | None = None,
    ):
        self.status = int(status) if status is not None else None
        self.method = method
        self.url = url
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        detail = (self.detail or "").strip()
        head = f"HTTP {self.status}" if self.status is not None else "Command failed"
        if detail:
            return f"{head} {self.method} {self.url}: {detail}"
        return f"{head} {self.method} {self.url}"


class ResourceError(ComfyLinkError):
    """A preview resource could not be allocated."""


class AccountExistsError(ComfyLinkError):
    """The identity is already registered."""
