"""Optimistic send pipeline and the local mutations that share its shape."""

from __future__ import annotations

import itertools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from ..errors import TransientNetworkError
from ..models.enums import DeliveryState, RecorderState
from ..monitoring.metrics import messages_sent_total, reaction_toggles_total
from ..schemas.messages import Attachment, Message, OutgoingMessage, utcnow
from .content import classify_kind, extract_shared_post_id
from .ports import CLEAR_FAILED, DELETE_FAILED, EDIT_FAILED, SEND_FAILED, MessageService, Notifier
from .reactions import toggle_reaction
from .timeline import TimelineStore

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from ..media.capture import MediaCaptureUnit
    from ..realtime.typing import TypingSignaler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ComposeState:
    """What the user is currently composing."""

    text: str = ""
    reply_to_id: str | None = None
    attachment: Attachment | None = None

    def stage(self, attachment: Attachment) -> None:
        """Stage an attachment, discarding any previously staged one."""

        if self.attachment is not None and self.attachment is not attachment:
            self.discard_attachment()
        self.attachment = attachment

    def discard_attachment(self) -> None:
        attachment, self.attachment = self.attachment, None
        if attachment is not None and attachment.preview is not None:
            attachment.preview.revoke()

    def reset(self, *, keep: Attachment | None = None) -> None:
        """Clear the compose box; a staged attachment other than ``keep`` is revoked."""

        self.text = ""
        self.reply_to_id = None
        if self.attachment is not None and self.attachment is not keep:
            self.discard_attachment()
        self.attachment = None


class SendPipeline:
    """Insert placeholders immediately and reconcile them with the server.

    A successful submission swaps the placeholder for the confirmed record at
    the same position; a failed one removes it and raises a single
    notification. Nothing is retried.
    """

    def __init__(
        self,
        timeline: TimelineStore,
        service: MessageService,
        notifier: Notifier,
        *,
        local_user_id: str,
        peer_id: str,
        compose: ComposeState | None = None,
        typing: "TypingSignaler | None" = None,
        recorder: "MediaCaptureUnit | None" = None,
        temp_id_prefix: str = "local",
        recording_file_name: str = "voice-message.webm",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._timeline = timeline
        self._service = service
        self._notifier = notifier
        self._local_user_id = local_user_id
        self._peer_id = peer_id
        self.compose = compose if compose is not None else ComposeState()
        self._typing = typing
        self._recorder = recorder
        self._temp_prefix = f"{temp_id_prefix}-{uuid.uuid4().hex[:8]}"
        self._counter = itertools.count(1)
        self._recording_file_name = recording_file_name
        self._clock = clock

    @property
    def peer_id(self) -> str:
        return self._peer_id

    def next_temp_id(self) -> str:
        return f"{self._temp_prefix}-{next(self._counter)}"

    def is_temp_id(self, message_id: str) -> bool:
        return message_id.startswith(f"{self._temp_prefix}-")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    async def send(
        self,
        text: str | None = None,
        *,
        attachment: Attachment | None = None,
        reply_to_id: str | None = None,
        shared_post_id: str | None = None,
    ) -> Message | None:
        """Send a message; arguments left out are taken from the compose state.

        Returns the confirmed message, or None when there was nothing to send
        or the submission failed.
        """

        if text is None:
            text = self.compose.text
        if reply_to_id is None:
            reply_to_id = self.compose.reply_to_id
        if attachment is None:
            attachment = self.compose.attachment
        if attachment is None and self._recorder is not None and self._recorder.pending is not None:
            recording = self._recorder.take()
            attachment = recording.as_attachment(self._recording_file_name)

        text = text.strip() if text else None
        if not text and attachment is None:
            return None

        shared_post_id = shared_post_id or extract_shared_post_id(text)
        kind = classify_kind(text, attachment, shared_post_id)
        temp_id = self.next_temp_id()
        placeholder = Message(
            id=temp_id,
            sender_id=self._local_user_id,
            recipient_id=self._peer_id,
            conversation_peer_id=self._peer_id,
            kind=kind,
            body=text,
            attachment_ref=attachment.preview.url if attachment and attachment.preview else None,
            reply_to_id=reply_to_id,
            shared_post_id=shared_post_id,
            delivery_state=DeliveryState.PENDING,
            created_at=self._clock(),
        )
        payload = OutgoingMessage(
            recipient_id=self._peer_id,
            kind=kind,
            client_id=temp_id,
            text=text,
            attachment=attachment,
            reply_to_id=reply_to_id,
            shared_post_id=shared_post_id,
        )
        self._timeline.append(placeholder)
        self.compose.reset(keep=attachment)
        try:
            if self._recorder is not None and self._recorder.state is not RecorderState.IDLE:
                await self._recorder.cancel()
            if self._typing is not None:
                await self._typing.stop()
            confirmed = await self._service.submit_message(payload)
        except TransientNetworkError as exc:
            self._timeline.remove_by_id(temp_id)
            messages_sent_total.labels("failed").inc()
            logger.warning(
                "Message send failed; optimistic record removed",
                extra={"peer_id": self._peer_id, "temp_id": temp_id},
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._notifier.notify(SEND_FAILED, str(exc))
            return None
        except Exception:
            self._timeline.remove_by_id(temp_id)
            messages_sent_total.labels("failed").inc()
            logger.exception("Unexpected error while sending message", extra={"temp_id": temp_id})
            raise
        finally:
            if attachment is not None and attachment.preview is not None:
                attachment.preview.revoke()

        confirmed = confirmed.with_updates(
            conversation_peer_id=self._peer_id,
            delivery_state=confirmed.delivery_state.advance(DeliveryState.SENT),
        )
        if not self._timeline.replace(temp_id, confirmed):
            logger.info(
                "Dropped confirmation for a placeholder no longer in the timeline",
                extra={"temp_id": temp_id, "message_id": confirmed.id},
            )
        messages_sent_total.labels("confirmed").inc()
        return confirmed

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------
    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        message = self._timeline.find_by_id(message_id)
        if message is None or message.is_pending or message.is_deleted:
            return False
        self._timeline.update_by_id(
            message.id,
            {"reactions": toggle_reaction(message.reactions, self._local_user_id, emoji)},
        )
        try:
            await self._service.toggle_reaction(message.id, emoji)
        except TransientNetworkError:
            # The next reaction-updated event carries the server's full set.
            reaction_toggles_total.labels("failed").inc()
            logger.warning(
                "Reaction toggle failed",
                extra={"message_id": message.id},
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return False
        reaction_toggles_total.labels("sent").inc()
        return True

    def _own_confirmed(self, message_id: str) -> Message | None:
        message = self._timeline.find_by_id(message_id)
        if message is None or message.is_pending or message.is_deleted:
            return None
        if message.sender_id != self._local_user_id:
            return None
        return message

    async def edit_message(self, message_id: str, text: str) -> bool:
        text = text.strip()
        message = self._own_confirmed(message_id)
        if message is None or not text:
            return False
        self._timeline.update_by_id(message.id, {"body": text, "is_edited": True})
        try:
            await self._service.edit_message(message.id, text)
        except TransientNetworkError as exc:
            logger.warning("Message edit failed", extra={"message_id": message.id})
            self._notifier.notify(EDIT_FAILED, str(exc))
            return False
        return True

    async def delete_message(self, message_id: str) -> bool:
        message = self._own_confirmed(message_id)
        if message is None:
            return False
        self._timeline.update_by_id(
            message.id, {"is_deleted": True, "body": None, "attachment_ref": None}
        )
        try:
            await self._service.delete_message(message.id)
        except TransientNetworkError as exc:
            logger.warning("Message delete failed", extra={"message_id": message.id})
            self._notifier.notify(DELETE_FAILED, str(exc))
            return False
        return True

    async def clear_conversation(self) -> bool:
        try:
            await self._service.clear_conversation(self._peer_id)
        except TransientNetworkError as exc:
            logger.warning("Conversation clear failed", extra={"peer_id": self._peer_id})
            self._notifier.notify(CLEAR_FAILED, str(exc))
            return False
        self._timeline.clear()
        return True


__all__ = ["ComposeState", "SendPipeline"]
