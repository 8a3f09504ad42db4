"""Debounced typing indicator for the local user."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from ..errors import ChannelClosedError
from ..schemas.events import TYPING_STARTED, TYPING_STOPPED
from .channel import EventChannel

logger = logging.getLogger(__name__)


class TypingSignaler:
    """Emit typing-started once per burst and typing-stopped after inactivity.

    Each keystroke restarts a single idle timer. Emission is fire and forget:
    failures are logged and never retried.
    """

    def __init__(self, channel: EventChannel, peer_id: str, *, idle_timeout: float = 3.0) -> None:
        self._channel = channel
        self._peer_id = peer_id
        self._idle_timeout = idle_timeout
        self._typing = False
        self._timer: asyncio.Task[None] | None = None
        self._emit_warning_logged = False

    @property
    def is_locally_typing(self) -> bool:
        return self._typing

    @property
    def peer_id(self) -> str:
        return self._peer_id

    async def keystroke(self) -> None:
        if not self._typing:
            self._typing = True
            await self._emit(TYPING_STARTED)
        self._restart_timer()

    async def stop(self) -> None:
        """End the typing burst now (message sent or input cleared)."""

        self._cancel_timer()
        if self._typing:
            self._typing = False
            await self._emit(TYPING_STOPPED)

    async def cancel(self) -> None:
        """Teardown on conversation switch; waits for a stop already in flight."""

        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        await self.stop()

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._expire(), name="typing-idle-timer")

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _expire(self) -> None:
        await asyncio.sleep(self._idle_timeout)
        self._timer = None
        await self.stop()

    async def _emit(self, event_type: str) -> None:
        payload: dict[str, Any] = {"peerId": self._peer_id}
        try:
            await self._channel.emit(event_type, payload)
        except (ChannelClosedError, OSError):
            if not self._emit_warning_logged:
                logger.warning(
                    "Realtime channel unavailable while sending %s; typing indicator skipped",
                    event_type,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._emit_warning_logged = True
        except Exception:
            logger.exception("Unexpected error while sending %s", event_type)
        else:
            self._emit_warning_logged = False


__all__ = ["TypingSignaler"]
