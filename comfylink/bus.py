"""Typed event bus with epoch-scoped subscriptions.

Every subscription belongs to an `Epoch`. Cancelling the epoch drops all of
its handlers at once, for every event type, and a handler is never invoked
after its epoch has been cancelled.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from comfylink.events import Event

log = logging.getLogger("comfylink.bus")

E = TypeVar("E")

Handler = Callable[[E], None]


class Epoch:
    """Cancellation token for one group of subscriptions."""

    def __init__(self, bus: EventBus, generation: int):
        self._bus = bus
        self.generation = generation
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._bus._detach(self)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"Epoch(generation={self.generation}, {state})"


class EventBus:
    def __init__(self) -> None:
        self._generation = 0
        self._handlers: dict[type, list[tuple[Epoch, Callable[[object], None]]]] = {}

    @property
    def generation(self) -> int:
        return self._generation

    def new_epoch(self) -> Epoch:
        self._generation += 1
        return Epoch(self, self._generation)

    def subscribe(self, event_type: type[E], handler: Handler[E], epoch: Epoch) -> None:
        if epoch._bus is not self:
            raise ValueError("epoch belongs to a different bus")
        if epoch.cancelled:
            log.debug(f"Ignoring subscription to {event_type.__name__} on {epoch!r}")
            return
        self._handlers.setdefault(event_type, []).append((epoch, handler))

    def publish(self, event: Event) -> None:
        # Snapshot: a handler may cancel its own epoch mid-delivery.
        handlers = list(self._handlers.get(type(event), ()))
        for epoch, handler in handlers:
            if epoch.cancelled:
                continue
            try:
                handler(event)
            except Exception:
                log.exception(f"Handler for {type(event).__name__} failed")

    def subscriber_count(self, epoch: Epoch | None = None) -> int:
        return sum(
            1
            for entries in self._handlers.values()
            for owner, _ in entries
            if epoch is None or owner is epoch
        )

    def _detach(self, epoch: Epoch) -> None:
        for event_type in list(self._handlers):
            remaining = [entry for entry in self._handlers[event_type] if entry[0] is not epoch]
            if remaining:
                self._handlers[event_type] = remaining
            else:
                del self._handlers[event_type]
