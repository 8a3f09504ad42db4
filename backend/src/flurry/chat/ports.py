"""Interfaces of the collaborators the chat engine consumes."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from ..schemas.messages import Message, OutgoingMessage

# Notification kinds raised through ``Notifier.notify``.
SEND_FAILED = "send_failed"
EDIT_FAILED = "edit_failed"
DELETE_FAILED = "delete_failed"
CLEAR_FAILED = "clear_failed"
HISTORY_FAILED = "history_failed"
MIC_DENIED = "mic_denied"
MESSAGE_NOT_LOADED = "message_not_loaded"


class MessageService(Protocol):
    """Network collaborator for message persistence.

    Implementations raise ``TransientNetworkError`` when a request fails.
    """

    async def fetch_history(self, peer_id: str) -> Sequence[Message]: ...

    async def submit_message(self, payload: OutgoingMessage) -> Message: ...

    async def acknowledge_read(self, peer_id: str) -> None: ...

    async def toggle_reaction(self, message_id: str, emoji: str) -> None: ...

    async def edit_message(self, message_id: str, text: str) -> None: ...

    async def delete_message(self, message_id: str) -> None: ...

    async def clear_conversation(self, peer_id: str) -> None: ...


class Notifier(Protocol):
    """Transient user-facing notification sink (toasts)."""

    def notify(self, kind: str, detail: str | None = None) -> None: ...


class LoggingNotifier:
    """Notifier used when the embedding UI does not provide one."""

    def __init__(self, logger_name: str = "flurry.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    def notify(self, kind: str, detail: str | None = None) -> None:
        self._logger.info("notification %s: %s", kind, detail or "")


__all__ = [
    "MessageService",
    "Notifier",
    "LoggingNotifier",
    "SEND_FAILED",
    "EDIT_FAILED",
    "DELETE_FAILED",
    "CLEAR_FAILED",
    "HISTORY_FAILED",
    "MIC_DENIED",
    "MESSAGE_NOT_LOADED",
]
