"""SessionStore.

This is the single place that owns:
- the connection phase (closed -> connecting -> open -> closed)
- the subscription epoch for the live connection
- state derived from backend events (queue, progress, node, job id)
- the live preview handle

Callers read state through properties or `snapshot()` and run commands
through the store; nothing else mutates the derived fields.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from comfylink.accounts import AccountDirectory
from comfylink.bus import Epoch, EventBus
from comfylink.client import ComfyClient
from comfylink.config import ComfyConfig
from comfylink.errors import ResourceError, TransportError
from comfylink.events import (
    Disconnected,
    Executing,
    ExecutionError,
    ExecutionStart,
    ExecutionSuccess,
    Frame,
    FrameDemultiplexer,
    PreviewFrame,
    Progress,
    QueueStatus,
)
from comfylink.identity import IdentityStore, MemoryIdentityStore
from comfylink.models import PromptQueued, SystemStats, UploadedImage
from comfylink.ports import TransportFactory, TransportPort
from comfylink.previews import PreviewHandle, PreviewRegistry
from comfylink.transport import WebSocketTransport

log = logging.getLogger("comfylink.session")

PHASE_CLOSED = "closed"
PHASE_CONNECTING = "connecting"
PHASE_OPEN = "open"


@dataclass(frozen=True)
class SessionSnapshot:
    identity: str | None
    phase: str
    queue_remaining: int
    progress: Progress | None
    executing_node_id: str | None
    current_job_id: str | None
    preview_url: str | None


class SessionStore:
    def __init__(
        self,
        config: ComfyConfig | None = None,
        *,
        identity_store: IdentityStore | None = None,
        transport_factory: TransportFactory | None = None,
        client: ComfyClient | None = None,
        bus: EventBus | None = None,
        previews: PreviewRegistry | None = None,
    ):
        self.config = config or ComfyConfig()
        self._identity_store = identity_store or MemoryIdentityStore()
        self._transport_factory = transport_factory or (lambda: WebSocketTransport(self.config))
        self.bus = bus or EventBus()
        self.previews = previews or PreviewRegistry()
        self.client = client or ComfyClient(self.config, identity=lambda: self.identity)
        self._demux = FrameDemultiplexer(self.bus.publish)

        self._identity: str | None = self._identity_store.get()
        self._phase = PHASE_CLOSED
        self._transport: TransportPort | None = None
        self._closing: set[asyncio.Task] = set()
        self._epoch: Epoch | None = None

        self._queue_remaining = 0
        self._progress: Progress | None = None
        self._executing_node_id: str | None = None
        self._current_job_id: str | None = None
        self._preview: PreviewHandle | None = None

        self._listeners: list[Callable[[SessionSnapshot], None]] = []

    # -----------------
    # Selectors
    # -----------------

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def phase(self) -> str:
        return self._phase

    @property
    def queue_remaining(self) -> int:
        return self._queue_remaining

    @property
    def progress(self) -> Progress | None:
        return self._progress

    @property
    def executing_node_id(self) -> str | None:
        return self._executing_node_id

    @property
    def current_job_id(self) -> str | None:
        return self._current_job_id

    @property
    def preview(self) -> PreviewHandle | None:
        return self._preview

    @property
    def epoch(self) -> Epoch | None:
        return self._epoch

    @property
    def pending_closes(self) -> int:
        return len(self._closing)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            identity=self._identity,
            phase=self._phase,
            queue_remaining=self._queue_remaining,
            progress=self._progress,
            executing_node_id=self._executing_node_id,
            current_job_id=self._current_job_id,
            preview_url=self._preview.url if self._preview else None,
        )

    def add_listener(self, listener: Callable[[SessionSnapshot], None]) -> Callable[[], None]:
        """Call `listener` with a snapshot after every state change."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                log.exception("Session listener failed")

    # -----------------
    # Connection lifecycle
    # -----------------

    async def connect(self, identity: str) -> None:
        """Open the session for `identity`.

        No-op while connecting or open. Handshake failures are logged and
        leave the phase closed; they are not raised.
        """
        if self._phase != PHASE_CLOSED:
            log.debug(f"connect({identity!r}) ignored: session is {self._phase}")
            return

        self._identity = identity
        self._phase = PHASE_CONNECTING
        transport = self._transport_factory()
        self._transport = transport
        self._notify()

        try:
            await transport.connect(
                identity,
                on_frame=self._frame_sink(transport),
                on_close=self._close_sink(transport),
            )
        except asyncio.CancelledError:
            if self._transport is transport:
                self._teardown()
            raise
        except TransportError as e:
            self._retire(transport)
            if self._transport is transport and self._phase == PHASE_CONNECTING:
                log.error(f"Connect failed for {identity}: {e}")
                self._transport = None
                self._phase = PHASE_CLOSED
                self._notify()
            else:
                log.debug(f"Superseded connect attempt for {identity} ended: {e}")
            return

        if self._transport is not transport or self._phase != PHASE_CONNECTING:
            # A disconnect raced ahead of this handshake.
            log.info(f"Discarding late connection for {identity}")
            transport.close()
            self._retire(transport)
            return

        self._enter_open(identity)

    def disconnect(self) -> None:
        if (
            self._phase == PHASE_CLOSED
            and self._transport is None
            and self._epoch is None
            and self._preview is None
        ):
            return
        log.info(f"Disconnecting session {self._identity}")
        self._teardown()

    def logout(self) -> None:
        self.disconnect()
        self._identity_store.clear()
        if self._identity is not None:
            self._identity = None
            self._notify()

    async def resume(self, directory: AccountDirectory) -> None:
        """Reconnect with the persisted identity if the directory still knows it."""
        identity = self._identity or self._identity_store.get()
        if not identity:
            log.debug("No persisted identity to resume")
            return
        if not directory.exists(identity):
            log.warning(f"Identity {identity} no longer exists; logging out")
            self.logout()
            return
        await self.connect(identity)

    async def register(self, directory: AccountDirectory, identity: str) -> None:
        """Create `identity` in the directory, then connect with it."""
        directory.create(identity)
        await self.connect(identity)

    async def aclose(self) -> None:
        self.disconnect()
        if self._closing:
            await asyncio.gather(*list(self._closing))
        await self.client.close()

    def _frame_sink(self, transport: TransportPort) -> Callable[[Frame], None]:
        def on_frame(frame: Frame) -> None:
            if self._transport is transport:
                self._demux.feed(frame)

        return on_frame

    def _close_sink(self, transport: TransportPort) -> Callable[[], None]:
        def on_close() -> None:
            if self._transport is transport:
                self._demux.closed()

        return on_close

    def _enter_open(self, identity: str) -> None:
        self._identity_store.set(identity)

        if self._epoch is not None:
            self._epoch.cancel()
        epoch = self.bus.new_epoch()
        self._epoch = epoch

        self.bus.subscribe(QueueStatus, self._on_status, epoch)
        self.bus.subscribe(Progress, self._on_progress, epoch)
        self.bus.subscribe(Executing, self._on_executing, epoch)
        self.bus.subscribe(ExecutionStart, self._on_execution_start, epoch)
        self.bus.subscribe(ExecutionSuccess, self._on_execution_finished, epoch)
        self.bus.subscribe(ExecutionError, self._on_execution_finished, epoch)
        self.bus.subscribe(PreviewFrame, self._on_preview, epoch)
        self.bus.subscribe(Disconnected, self._on_disconnected, epoch)

        self._phase = PHASE_OPEN
        log.info(f"Session open for {identity} (epoch {epoch.generation})")
        self._notify()

    def _teardown(self) -> None:
        # Detach subscribers first, then the socket, then reset state.
        epoch, self._epoch = self._epoch, None
        if epoch is not None:
            epoch.cancel()

        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
            self._retire(transport)

        preview, self._preview = self._preview, None
        if preview is not None:
            self.previews.revoke(preview)

        self._queue_remaining = 0
        self._reset_execution()
        self._phase = PHASE_CLOSED
        self._notify()

    def _retire(self, transport: TransportPort) -> None:
        # Track the shutdown until it finishes so aclose() can await it.
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(transport.wait_closed())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _reset_execution(self) -> None:
        self._progress = None
        self._executing_node_id = None
        self._current_job_id = None

    # -----------------
    # Event handlers
    # -----------------

    def _on_status(self, event: QueueStatus) -> None:
        self._queue_remaining = event.queue_remaining
        self._notify()

    def _on_progress(self, event: Progress) -> None:
        self._progress = event
        self._notify()

    def _on_executing(self, event: Executing) -> None:
        self._executing_node_id = event.node
        self._notify()

    def _on_execution_start(self, event: ExecutionStart) -> None:
        self._current_job_id = event.prompt_id
        self._notify()

    def _on_execution_finished(self, event: ExecutionSuccess | ExecutionError) -> None:
        if isinstance(event, ExecutionError):
            log.warning(f"Prompt {self._current_job_id} failed: {event.data!r}")
        self._reset_execution()
        self._notify()

    def _on_preview(self, event: PreviewFrame) -> None:
        previous, self._preview = self._preview, None
        if previous is not None:
            self.previews.revoke(previous)
        try:
            self._preview = self.previews.create(event.data)
        except ResourceError as e:
            log.warning(f"Skipping preview frame: {e}")
        self._notify()

    def _on_disconnected(self, event: Disconnected) -> None:
        if self._phase == PHASE_CLOSED:
            return
        log.info(f"Session {self._identity} closed by backend")
        self._teardown()

    # -----------------
    # Commands
    # -----------------

    async def queue_prompt(self, workflow: dict, client_id: str | None = None) -> PromptQueued:
        return await self.client.queue_prompt(workflow, client_id)

    async def interrupt(self, client_id: str | None = None) -> None:
        await self.client.interrupt(client_id)

    async def clear_queue(self, client_id: str | None = None) -> None:
        await self.client.clear_queue(client_id)

    async def upload_image(
        self,
        image: bytes | Path | str,
        *,
        filename: str | None = None,
        type: str = "input",
        overwrite: bool = False,
        client_id: str | None = None,
    ) -> UploadedImage:
        return await self.client.upload_image(
            image, filename=filename, type=type, overwrite=overwrite, client_id=client_id
        )

    async def get_system_stats(self, client_id: str | None = None) -> SystemStats:
        return await self.client.get_system_stats(client_id)

    def image_url(self, filename: str, subfolder: str = "", type: str = "output") -> str:
        return self.client.image_url(filename, subfolder, type)
