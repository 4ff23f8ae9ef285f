"""Client configuration.

Values come from explicit overrides first, then the environment (optionally
seeded from a `.env` file via `load_env()`), then defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path.cwd() / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


def _normalize_prefix(prefix: str) -> str:
    prefix = prefix.strip().rstrip("/")
    if prefix and not prefix.startswith("/"):
        prefix = "/" + prefix
    return prefix


@dataclass(frozen=True)
class ComfyConfig:
    base_url: str | None = None
    api_prefix: str | None = None
    http_timeout_s: float | None = None
    ws_heartbeat_s: float | None = None

    # Some backend builds reject websocket upgrades whose Origin does not
    # match their own address.
    origin: str | None = None

    state_db: Path | None = None
    accounts_dir: Path | None = None

    def resolve_base_url(self) -> str:
        base = self.base_url or os.getenv("COMFYLINK_BASE_URL") or "http://127.0.0.1:3000"
        return base.rstrip("/")

    def resolve_api_prefix(self) -> str:
        if self.api_prefix is not None:
            return _normalize_prefix(self.api_prefix)
        return _normalize_prefix(os.getenv("COMFYLINK_API_PREFIX", "/api-comfy"))

    def resolve_http_timeout_s(self) -> float:
        if self.http_timeout_s is not None:
            return float(self.http_timeout_s)
        return float(os.getenv("COMFYLINK_HTTP_TIMEOUT_S", "60"))

    def resolve_ws_heartbeat_s(self) -> float | None:
        if self.ws_heartbeat_s is not None:
            value = float(self.ws_heartbeat_s)
        else:
            value = float(os.getenv("COMFYLINK_WS_HEARTBEAT_S", "30"))
        return value if value > 0 else None

    def resolve_origin(self) -> str | None:
        return self.origin or os.getenv("COMFYLINK_ORIGIN") or None

    def resolve_state_db(self) -> Path:
        if self.state_db is not None:
            return Path(self.state_db)
        default = Path.home() / ".comfylink" / "state.db"
        return Path(os.getenv("COMFYLINK_STATE_DB", str(default)))

    def resolve_accounts_dir(self) -> Path:
        if self.accounts_dir is not None:
            return Path(self.accounts_dir)
        default = Path.home() / ".comfylink" / "accounts"
        return Path(os.getenv("COMFYLINK_ACCOUNTS_DIR", str(default)))

    def api_url(self, path: str) -> str:
        """Absolute URL for a command path under the API prefix."""
        return f"{self.resolve_base_url()}{self.resolve_api_prefix()}{path}"

    def ws_url(self) -> str:
        """Websocket URL; the scheme mirrors the base URL's (http->ws, https->wss)."""
        parts = urlsplit(self.resolve_base_url())
        scheme = "wss" if parts.scheme == "https" else "ws"
        path = f"{parts.path.rstrip('/')}{self.resolve_api_prefix()}/ws"
        return urlunsplit((scheme, parts.netloc, path, "", ""))
