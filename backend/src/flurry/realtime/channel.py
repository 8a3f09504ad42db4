"""Event channel contract and the in-process implementation."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from typing import Any, Awaitable, Callable, Protocol

from ..errors import ChannelClosedError

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]
EmissionSink = Callable[[str, dict[str, Any]], Awaitable[None]]


class Subscription:
    """Handle returned when subscribing to a channel; ``close`` detaches it."""

    def __init__(
        self,
        name: str,
        cleanup: Callable[[], Awaitable[None]],
        task: asyncio.Task[Any] | None = None,
    ) -> None:
        self._name = name
        self._cleanup = cleanup
        self._task = task
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        await self._cleanup()


class EventChannel(Protocol):
    """Live bidirectional channel between the client and the server."""

    async def subscribe(self, handler: EventHandler, *, name: str = "") -> Subscription: ...

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class FanOutChannel:
    """Shared subscriber bookkeeping for channel implementations."""

    def __init__(self) -> None:
        self._handlers: dict[int, EventHandler] = {}
        self._ids = itertools.count(1)
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    @property
    def closed(self) -> bool:
        return self._closed

    async def subscribe(self, handler: EventHandler, *, name: str = "") -> Subscription:
        if self._closed:
            raise ChannelClosedError("Cannot subscribe to a closed channel")
        handler_id = next(self._ids)
        self._handlers[handler_id] = handler

        async def cleanup() -> None:
            self._handlers.pop(handler_id, None)

        return Subscription(name or f"subscriber-{handler_id}", cleanup)

    async def _dispatch(self, raw: dict[str, Any]) -> None:
        for handler in list(self._handlers.values()):
            try:
                await handler(raw)
            except Exception:
                logger.exception("Channel subscriber failed", extra={"event": raw.get("type")})

    async def close(self) -> None:
        self._closed = True
        self._handlers.clear()


class LocalEventChannel(FanOutChannel):
    """In-process channel.

    Inbound events are pushed with ``deliver``; outbound emissions are kept in
    ``emitted`` and forwarded to an optional sink.
    """

    def __init__(self, sink: EmissionSink | None = None) -> None:
        super().__init__()
        self._sink = sink
        self.emitted: list[tuple[str, dict[str, Any]]] = []

    async def deliver(self, raw: dict[str, Any]) -> None:
        if self._closed:
            raise ChannelClosedError("Cannot deliver on a closed channel")
        await self._dispatch(raw)

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._closed:
            raise ChannelClosedError("Cannot emit on a closed channel")
        self.emitted.append((event_type, dict(payload)))
        if self._sink is not None:
            await self._sink(event_type, dict(payload))


__all__ = [
    "EmissionSink",
    "EventChannel",
    "EventHandler",
    "FanOutChannel",
    "LocalEventChannel",
    "Subscription",
]
