"""Ports (interfaces) the session store depends on.

The store talks to these contracts rather than the aiohttp transport, so the
state machine can be driven by a fake connection.
"""

from __future__ import annotations

from typing import Callable, Protocol

from comfylink.events import Frame


class TransportPort(Protocol):
    @property
    def state(self) -> str: ...

    async def connect(
        self,
        identity: str,
        *,
        on_frame: Callable[[Frame], None],
        on_close: Callable[[], None],
    ) -> None: ...

    def close(self) -> None: ...

    async def wait_closed(self) -> None: ...


TransportFactory = Callable[[], TransportPort]
