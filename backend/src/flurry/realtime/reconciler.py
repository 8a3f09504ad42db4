"""Merge inbound channel events into the open conversation's timeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable

from pydantic import ValidationError

from ..chat.ports import MessageService
from ..chat.timeline import TimelineStore
from ..errors import TransientNetworkError
from ..models.enums import DeliveryState
from ..monitoring.metrics import read_acks_total, realtime_events_total
from ..schemas.events import (
    MESSAGE_DELETED,
    MESSAGE_EDITED,
    MESSAGE_RECEIVED,
    MESSAGES_DELIVERED,
    REACTION_UPDATED,
    READ_RECEIPT,
    TYPING_STARTED,
    TYPING_STOPPED,
    ChannelEvent,
    MessageDeleted,
    MessageEdited,
    MessageReceived,
    MessagesDelivered,
    ReactionUpdated,
    ReadReceipt,
    TypingSignal,
)
from ..schemas.messages import Message
from .channel import EventChannel, Subscription

logger = logging.getLogger(__name__)

APPLIED = "applied"
IGNORED = "ignored"


class RemoteEventReconciler:
    """Apply channel events for one conversation, strictly in receipt order.

    Inbound frames are queued by the channel handler and consumed by a single
    task, so an acknowledgement awaited while handling one event can never let
    a later event overtake it.
    """

    def __init__(
        self,
        timeline: TimelineStore,
        service: MessageService,
        *,
        local_user_id: str,
        peer_id: str,
        is_viewing: Callable[[], bool] = lambda: True,
        on_peer_typing: Callable[[bool], None] | None = None,
        on_event: Callable[[ChannelEvent, str], None] | None = None,
    ) -> None:
        self._timeline = timeline
        self._service = service
        self._local_user_id = local_user_id
        self._peer_id = peer_id
        self._is_viewing = is_viewing
        self._on_peer_typing = on_peer_typing
        self._on_event = on_event
        self._peer_is_typing = False
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._subscription: Subscription | None = None

    @property
    def peer_id(self) -> str:
        return self._peer_id

    @property
    def peer_is_typing(self) -> bool:
        return self._peer_is_typing

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------
    async def attach(self, channel: EventChannel, *, hold: bool = False) -> None:
        """Subscribe to ``channel``.

        With ``hold`` the events are queued but not applied until ``release``
        is called, so a conversation can subscribe before its history arrives.
        """

        if self._subscription is not None:
            return
        self._subscription = await channel.subscribe(self._enqueue, name=f"conversation:{self._peer_id}")
        logger.debug("Reconciler attached", extra={"peer_id": self._peer_id, "hold": hold})
        if not hold:
            self.release()

    def release(self) -> None:
        """Start applying queued and future events."""

        if self._subscription is None or self._consumer is not None:
            return
        if not self._queue.empty():
            logger.debug("Applying held events", extra={"peer_id": self._peer_id, "count": self._queue.qsize()})
        self._consumer = asyncio.create_task(self._consume(), name=f"reconciler-{self._peer_id}")

    async def detach(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        consumer, self._consumer = self._consumer, None
        if consumer is not None and not consumer.done():
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._set_peer_typing(False)
        logger.debug("Reconciler detached", extra={"peer_id": self._peer_id})

    async def drain(self) -> None:
        """Wait until every queued event has been applied; the consumer must be released."""

        await self._queue.join()

    async def _enqueue(self, raw: dict[str, Any]) -> None:
        self._queue.put_nowait(raw)

    async def _consume(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                await self.apply(raw)
            except Exception:
                logger.exception("Failed to apply realtime event", extra={"event": raw.get("type")})
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------
    async def apply(self, raw: dict[str, Any] | ChannelEvent) -> bool:
        """Apply one event; returns True when it changed local state."""

        if isinstance(raw, ChannelEvent):
            event = raw
        else:
            try:
                event = ChannelEvent.parse(raw)
            except ValidationError:
                logger.warning("Discarded malformed realtime event", extra={"event": raw.get("type")})
                realtime_events_total.labels(str(raw.get("type")), "malformed").inc()
                return False
            if event is None:
                return False

        handler = self._handlers[event.type]
        applied = await handler(self, event.payload)
        outcome = APPLIED if applied else IGNORED
        realtime_events_total.labels(event.type, outcome).inc()
        if self._on_event is not None:
            self._on_event(event, outcome)
        return applied

    async def _message_received(self, payload: MessageReceived) -> bool:
        message = payload.message
        from_peer = message.sender_id == self._peer_id and message.recipient_id in (None, self._local_user_id)
        own_echo = message.sender_id == self._local_user_id and message.recipient_id == self._peer_id
        if not (from_peer or own_echo):
            return False

        updates: dict[str, Any] = {"conversation_peer_id": self._peer_id}
        if from_peer:
            updates["delivery_state"] = message.delivery_state.advance(DeliveryState.DELIVERED)
        if not self._timeline.append(message.with_updates(**updates)):
            return False

        if from_peer and self._is_viewing():
            await self._acknowledge(message)
        return True

    async def _acknowledge(self, message: Message) -> None:
        try:
            await self._service.acknowledge_read(self._peer_id)
        except TransientNetworkError:
            read_acks_total.labels("failed").inc()
            logger.warning(
                "Read acknowledgement failed",
                extra={"peer_id": self._peer_id},
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return
        read_acks_total.labels("sent").inc()
        self._timeline.update_by_id(
            message.id,
            lambda current: current.with_updates(
                delivery_state=current.delivery_state.advance(DeliveryState.READ)
            ),
        )

    async def _read_receipt(self, payload: ReadReceipt) -> bool:
        if payload.by_user_id != self._peer_id:
            return False
        changed = self._advance_own_messages(DeliveryState.READ)
        return changed > 0

    async def _messages_delivered(self, payload: MessagesDelivered) -> bool:
        if payload.to_user_id != self._peer_id:
            return False
        changed = self._advance_own_messages(DeliveryState.DELIVERED, only_id=payload.message_id)
        return changed > 0

    def _advance_own_messages(self, target: DeliveryState, *, only_id: str | None = None) -> int:
        def eligible(message: Message) -> bool:
            if message.sender_id != self._local_user_id or message.is_pending:
                return False
            if only_id is not None and message.id != only_id:
                return False
            return message.delivery_state.rank < target.rank

        return self._timeline.update_where(
            eligible,
            lambda message: message.with_updates(delivery_state=message.delivery_state.advance(target)),
        )

    async def _reaction_updated(self, payload: ReactionUpdated) -> bool:
        updated = self._timeline.update_by_id(payload.message_id, {"reactions": payload.reactions})
        return updated is not None

    async def _message_edited(self, payload: MessageEdited) -> bool:
        updated = self._timeline.update_by_id(payload.message_id, {"body": payload.text, "is_edited": True})
        return updated is not None

    async def _message_deleted(self, payload: MessageDeleted) -> bool:
        updated = self._timeline.update_by_id(
            payload.message_id,
            {"is_deleted": True, "body": None, "attachment_ref": None},
        )
        return updated is not None

    async def _typing_started(self, payload: TypingSignal) -> bool:
        return self._peer_typing_signal(payload, True)

    async def _typing_stopped(self, payload: TypingSignal) -> bool:
        return self._peer_typing_signal(payload, False)

    def _peer_typing_signal(self, payload: TypingSignal, typing: bool) -> bool:
        # Legacy typing frames carry no sender; they are only routed to the peer's counterpart.
        if payload.from_user_id not in (None, self._peer_id):
            return False
        return self._set_peer_typing(typing)

    def _set_peer_typing(self, typing: bool) -> bool:
        if self._peer_is_typing == typing:
            return False
        self._peer_is_typing = typing
        if self._on_peer_typing is not None:
            self._on_peer_typing(typing)
        return True

    _handlers = {
        MESSAGE_RECEIVED: _message_received,
        READ_RECEIPT: _read_receipt,
        REACTION_UPDATED: _reaction_updated,
        MESSAGES_DELIVERED: _messages_delivered,
        MESSAGE_EDITED: _message_edited,
        MESSAGE_DELETED: _message_deleted,
        TYPING_STARTED: _typing_started,
        TYPING_STOPPED: _typing_stopped,
    }


__all__ = ["RemoteEventReconciler", "APPLIED", "IGNORED"]
