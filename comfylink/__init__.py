"""Realtime session client for a ComfyUI-style compute backend."""

from comfylink.accounts import AccountDirectory, FolderAccountDirectory
from comfylink.bus import Epoch, EventBus
from comfylink.client import ComfyClient
from comfylink.config import ComfyConfig, load_env
from comfylink.errors import (
    AccountExistsError,
    ComfyLinkError,
    CommandError,
    ProtocolError,
    ResourceError,
    TransportError,
)
from comfylink.identity import IdentityStore, MemoryIdentityStore, SqliteIdentityStore
from comfylink.session import (
    PHASE_CLOSED,
    PHASE_CONNECTING,
    PHASE_OPEN,
    SessionSnapshot,
    SessionStore,
)
from comfylink.transport import WebSocketTransport

__all__ = [
    "AccountDirectory",
    "AccountExistsError",
    "ComfyClient",
    "ComfyConfig",
    "ComfyLinkError",
    "CommandError",
    "Epoch",
    "EventBus",
    "FolderAccountDirectory",
    "IdentityStore",
    "MemoryIdentityStore",
    "PHASE_CLOSED",
    "PHASE_CONNECTING",
    "PHASE_OPEN",
    "ProtocolError",
    "ResourceError",
    "SessionSnapshot",
    "SessionStore",
    "SqliteIdentityStore",
    "TransportError",
    "WebSocketTransport",
    "load_env",
]
