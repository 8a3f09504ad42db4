"""Event channel backed by a websocket connection."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import ChannelClosedError
from .channel import FanOutChannel

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


class WebSocketEventChannel(FanOutChannel):
    """Exchange ``{"type", "payload"}`` JSON envelopes over a websocket."""

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        open_timeout: float = 10.0,
        connector: Connector = ws_connect,
    ) -> None:
        super().__init__()
        self._url = url
        self._token = token
        self._open_timeout = open_timeout
        self._connector = connector
        self._connection: Any | None = None
        self._reader: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def start(self) -> None:
        if self._connection is not None:
            return
        headers: dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            self._connection = await self._connector(
                self._url,
                additional_headers=headers,
                open_timeout=self._open_timeout,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError):
            logger.exception("Failed to connect to realtime channel", extra={"url": self._url})
            raise
        self._closed = False
        self._reader = asyncio.create_task(self._read_loop(), name="realtime-ws-reader")
        logger.info("Realtime channel connected", extra={"url": self._url})

    async def _read_loop(self) -> None:
        connection = self._connection
        try:
            async for frame in connection:
                if isinstance(frame, bytes):
                    frame = frame.decode("utf-8", errors="replace")
                try:
                    data = json.loads(frame)
                except json.JSONDecodeError:
                    logger.warning("Discarded malformed realtime frame")
                    continue
                if not isinstance(data, dict) or not isinstance(data.get("type"), str):
                    logger.warning("Discarded realtime frame without an event type")
                    continue
                await self._dispatch(data)
        except ConnectionClosed:
            logger.info("Realtime channel closed by server", extra={"url": self._url})

    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._connection is None or self._closed:
            raise ChannelClosedError("Realtime channel is not connected")
        encoded = json.dumps({"type": event_type, "payload": payload})
        try:
            await self._connection.send(encoded)
        except ConnectionClosed as exc:
            raise ChannelClosedError("Realtime channel closed while emitting") from exc

    async def close(self) -> None:
        await super().close()
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
        self._reader = None
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()


__all__ = ["WebSocketEventChannel"]
