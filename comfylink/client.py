"""HTTP command client for the compute backend."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable
from urllib.parse import urlencode

import aiohttp

from comfylink.config import ComfyConfig
from comfylink.errors import CommandError
from comfylink.models import Device, PromptQueued, SystemStats, UploadedImage

log = logging.getLogger("comfylink.client")


def _as_int(value: object, default: int = 0) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


class ComfyClient:
    """Request/response commands (submit, interrupt, clear, upload, stats).

    Independent of the websocket: every networked call needs a client
    identity, taken from the explicit argument or from `identity()`.
    """

    def __init__(
        self,
        config: ComfyConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        identity: Callable[[], str | None] | None = None,
    ):
        self.config = config or ComfyConfig()
        self._session = session
        self._owns_session = session is None
        self._identity = identity

    async def __aenter__(self) -> ComfyClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.resolve_http_timeout_s())
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    def _resolve_identity(self, client_id: str | None, method: str, url: str) -> str:
        resolved = client_id or (self._identity() if self._identity else None)
        if not resolved:
            raise CommandError(
                None, method=method, url=url, detail="no client identity (not connected and none given)"
            )
        return resolved

    async def request_json(self, method: str, url: str, **kwargs) -> object | None:
        session = self._get_session()
        try:
            async with session.request(method, url, **kwargs) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    detail = text.strip() or resp.reason
                    raise CommandError(resp.status, method=method, url=url, detail=detail)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CommandError(None, method=method, url=url, detail=f"{type(e).__name__}: {e}") from e
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    async def queue_prompt(self, workflow: dict, client_id: str | None = None) -> PromptQueued:
        url = self.config.api_url("/prompt")
        target = self._resolve_identity(client_id, "POST", url)
        body = {"prompt": workflow, "client_id": target}
        response = await self.request_json("POST", url, json=body)
        if not isinstance(response, dict) or not isinstance(response.get("prompt_id"), str):
            raise CommandError(200, method="POST", url=url, detail=f"unexpected response: {response!r}")
        node_errors = response.get("node_errors")
        queued = PromptQueued(
            prompt_id=response["prompt_id"],
            number=_as_int(response.get("number")),
            node_errors=node_errors if isinstance(node_errors, dict) else {},
        )
        log.info(f"Queued prompt {queued.prompt_id} (#{queued.number}) for {target}")
        return queued

    async def interrupt(self, client_id: str | None = None) -> None:
        url = self.config.api_url("/interrupt")
        target = self._resolve_identity(client_id, "POST", url)
        await self.request_json("POST", url)
        log.info(f"Interrupt requested by {target}")

    async def clear_queue(self, client_id: str | None = None) -> None:
        url = self.config.api_url("/queue")
        target = self._resolve_identity(client_id, "POST", url)
        await self.request_json("POST", url, json={"clear": True})
        log.info(f"Queue cleared by {target}")

    async def upload_image(
        self,
        image: bytes | Path | str,
        *,
        filename: str | None = None,
        type: str = "input",
        overwrite: bool = False,
        client_id: str | None = None,
    ) -> UploadedImage:
        url = self.config.api_url("/upload/image")
        self._resolve_identity(client_id, "POST", url)

        if isinstance(image, (str, Path)):
            path = Path(image)
            data = path.read_bytes()
            filename = filename or path.name
        else:
            data = bytes(image)
        if not filename:
            raise CommandError(None, method="POST", url=url, detail="filename required for raw bytes")

        form = aiohttp.FormData()
        form.add_field("image", data, filename=filename, content_type="application/octet-stream")
        form.add_field("type", type)
        form.add_field("overwrite", str(overwrite).lower())

        response = await self.request_json("POST", url, data=form)
        if not isinstance(response, dict) or not isinstance(response.get("name"), str):
            raise CommandError(200, method="POST", url=url, detail=f"unexpected response: {response!r}")
        return UploadedImage(
            name=response["name"],
            subfolder=str(response.get("subfolder") or ""),
            type=str(response.get("type") or type),
        )

    async def get_system_stats(self, client_id: str | None = None) -> SystemStats:
        url = self.config.api_url("/system_stats")
        self._resolve_identity(client_id, "GET", url)
        response = await self.request_json("GET", url)
        if not isinstance(response, dict):
            raise CommandError(200, method="GET", url=url, detail=f"unexpected response: {response!r}")

        system = response.get("system") if isinstance(response.get("system"), dict) else {}
        devices: list[Device] = []
        for raw in response.get("devices") or []:
            if not isinstance(raw, dict):
                continue
            devices.append(
                Device(
                    name=str(raw.get("name", "")),
                    type=str(raw.get("type", "")),
                    index=_as_int(raw.get("index")),
                    vram_total=_as_int(raw.get("vram_total")),
                    vram_free=_as_int(raw.get("vram_free")),
                )
            )
        return SystemStats(
            os=str(system.get("os", "")),
            python_version=str(system.get("python_version", "")),
            embedded_python=bool(system.get("embedded_python", False)),
            devices=devices,
            raw=response,
        )

    def image_url(self, filename: str, subfolder: str = "", type: str = "output") -> str:
        """Retrieval locator for a stored image. No request is made."""
        query = urlencode({"filename": filename, "subfolder": subfolder, "type": type})
        return f"{self.config.resolve_api_prefix()}/view?{query}"
