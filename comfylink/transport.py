"""Websocket transport.

Owns one aiohttp websocket bound to a client identity. Frames are handed to
`on_frame` from a single reader task, in arrival order. Parsing and state
updates live elsewhere.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import aiohttp

from comfylink.config import ComfyConfig
from comfylink.errors import TransportError
from comfylink.events import Frame

log = logging.getLogger("comfylink.transport")

# idle -> connecting -> open -> closed, connecting -> closed on failure
STATE_IDLE = "idle"
STATE_CONNECTING = "connecting"
STATE_OPEN = "open"
STATE_CLOSED = "closed"


class WebSocketTransport:
    def __init__(
        self,
        config: ComfyConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ):
        self._config = config or ComfyConfig()
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._state = STATE_IDLE
        self._on_frame: Callable[[Frame], None] | None = None
        self._on_close: Callable[[], None] | None = None
        self._reader_task: asyncio.Task | None = None
        self._close_task: asyncio.Task | None = None
        self._url: str | None = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def url(self) -> str | None:
        return self._url

    async def connect(
        self,
        identity: str,
        *,
        on_frame: Callable[[Frame], None],
        on_close: Callable[[], None],
    ) -> None:
        if self._state != STATE_IDLE:
            raise TransportError(f"transport is {self._state}, not idle")

        self._state = STATE_CONNECTING
        self._on_frame = on_frame
        self._on_close = on_close
        self._url = self._config.ws_url()

        if self._session is None:
            self._session = aiohttp.ClientSession()

        headers = {}
        origin = self._config.resolve_origin()
        if origin:
            headers["Origin"] = origin

        log.info(f"Connecting to {self._url} as {identity}")
        try:
            ws = await self._session.ws_connect(
                self._url,
                params={"clientId": identity},
                headers=headers or None,
                heartbeat=self._config.resolve_ws_heartbeat_s(),
            )
        except asyncio.CancelledError:
            self._detach()
            self._state = STATE_CLOSED
            self._schedule_shutdown()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._detach()
            self._state = STATE_CLOSED
            self._schedule_shutdown()
            raise TransportError(f"{type(e).__name__}: {e}", url=self._url) from e

        self._ws = ws
        if self._state != STATE_CONNECTING:
            # close() ran while the handshake was in flight.
            self._schedule_shutdown()
            raise TransportError("closed during handshake", url=self._url)

        self._state = STATE_OPEN
        self._reader_task = asyncio.create_task(self._read_frames(ws))
        log.info(f"Websocket open: {self._url}")

    def close(self) -> None:
        """Close the connection. Safe to call repeatedly and from frame handlers."""
        if self._state == STATE_CLOSED:
            return
        was_connecting = self._state == STATE_CONNECTING
        self._detach()
        self._state = STATE_CLOSED
        if was_connecting:
            # connect() finishes the cleanup once the handshake returns.
            return
        # The reader sees the close and exits without reporting it.
        self._schedule_shutdown()

    async def wait_closed(self) -> None:
        if self._close_task:
            await self._close_task
        reader = self._reader_task
        if reader and reader is not asyncio.current_task():
            try:
                await reader
            except asyncio.CancelledError:
                pass

    def _detach(self) -> None:
        self._on_frame = None
        self._on_close = None

    def _schedule_shutdown(self) -> None:
        if self._close_task is None or self._close_task.done():
            self._close_task = asyncio.create_task(self._shutdown())

    async def _shutdown(self) -> None:
        ws = self._ws
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except Exception as e:
                log.debug(f"Websocket close ended with error: {e}")
        session = self._session
        if self._owns_session and session is not None and not session.closed:
            await session.close()

    async def _read_frames(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT or msg.type == aiohttp.WSMsgType.BINARY:
                on_frame = self._on_frame
                if on_frame is None:
                    break
                try:
                    on_frame(msg.data)
                except Exception:
                    log.exception("Frame handler failed")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                log.warning(f"Websocket error: {ws.exception()}")
                break

        if self._state != STATE_OPEN:
            return

        # Passive close: the server (or network) ended the connection.
        log.info(f"Websocket closed by peer: {self._url}")
        on_close = self._on_close
        self._detach()
        self._state = STATE_CLOSED
        self._schedule_shutdown()
        if on_close is not None:
            on_close()
