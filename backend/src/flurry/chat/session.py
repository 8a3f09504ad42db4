"""One-to-one chat session wiring the timeline, pipeline, reconciler and capture."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from ..config import Settings, get_settings
from ..errors import ChatError, ResourceAcquisitionError, TransientNetworkError
from ..media.capture import MediaCaptureUnit, MicrophoneProvider, PendingRecording
from ..media.previews import PreviewRegistry
from ..models.enums import DeliveryState
from ..monitoring.metrics import read_acks_total
from ..realtime.channel import EventChannel
from ..realtime.reconciler import RemoteEventReconciler
from ..realtime.typing import TypingSignaler
from ..schemas.events import ChannelEvent
from ..schemas.messages import Attachment, Message, ReactionGroup
from .ports import HISTORY_FAILED, MESSAGE_NOT_LOADED, MIC_DENIED, LoggingNotifier, MessageService, Notifier
from .reactions import aggregate_reactions
from .send import ComposeState, SendPipeline
from .timeline import ScrollAnchor, TimelineStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatContext:
    """Collaborators shared by every conversation of one signed-in user."""

    local_user_id: str
    service: MessageService
    channel: EventChannel
    notifier: Notifier = field(default_factory=LoggingNotifier)
    microphone: MicrophoneProvider | None = None
    previews: PreviewRegistry = field(default_factory=PreviewRegistry)
    settings: Settings = field(default_factory=get_settings)


class ChatSession:
    """The open conversation of a chat screen.

    Only one conversation is open at a time. Opening another peer tears the
    previous one down first: its channel subscription is closed, the typing
    timer is cancelled, a recording in progress is discarded and every staged
    preview is revoked before the new timeline is loaded.
    """

    def __init__(self, context: ChatContext) -> None:
        self._context = context
        settings = context.settings
        self.timeline = TimelineStore(highlight_duration=settings.highlight_duration_seconds)
        self.compose = ComposeState()
        self.recorder: MediaCaptureUnit | None = None
        if context.microphone is not None:
            self.recorder = MediaCaptureUnit(
                context.microphone,
                context.previews,
                tick_seconds=settings.recording_tick_seconds,
                content_type=settings.recording_content_type,
            )
        self._peer_id: str | None = None
        self._viewing = True
        self._typing: TypingSignaler | None = None
        self._reconciler: RemoteEventReconciler | None = None
        self._pipeline: SendPipeline | None = None
        self._generation = 0
        self.on_peer_typing: Callable[[bool], None] | None = None
        self.on_event: Callable[[ChannelEvent, str], None] | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def peer_id(self) -> str | None:
        return self._peer_id

    @property
    def is_open(self) -> bool:
        return self._peer_id is not None

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.timeline.messages

    @property
    def viewing(self) -> bool:
        return self._viewing

    @property
    def peer_is_typing(self) -> bool:
        return self._reconciler is not None and self._reconciler.peer_is_typing

    @property
    def is_locally_typing(self) -> bool:
        return self._typing is not None and self._typing.is_locally_typing

    @property
    def reconciler(self) -> RemoteEventReconciler | None:
        return self._reconciler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def open(self, peer_id: str) -> None:
        await self._teardown()
        self._generation += 1
        generation = self._generation
        context = self._context
        settings = context.settings

        self._peer_id = peer_id
        self._typing = TypingSignaler(
            context.channel,
            peer_id,
            idle_timeout=settings.typing_idle_timeout_seconds,
        )
        reconciler = self._reconciler = RemoteEventReconciler(
            self.timeline,
            context.service,
            local_user_id=context.local_user_id,
            peer_id=peer_id,
            is_viewing=lambda: self._viewing,
            on_peer_typing=self._peer_typing_changed,
            on_event=self._event_applied,
        )
        self._pipeline = SendPipeline(
            self.timeline,
            context.service,
            context.notifier,
            local_user_id=context.local_user_id,
            peer_id=peer_id,
            compose=self.compose,
            typing=self._typing,
            recorder=self.recorder,
            temp_id_prefix=settings.temp_id_prefix,
            recording_file_name=settings.recording_file_name,
        )

        # Subscribe before fetching so events published during the fetch are
        # queued; they are applied once the history is in place.
        await reconciler.attach(context.channel, hold=True)
        if generation != self._generation:
            await reconciler.detach()
            return

        history: Sequence[Message] = ()
        try:
            history = await context.service.fetch_history(peer_id)
        except TransientNetworkError as exc:
            logger.warning(
                "Failed to load conversation history",
                extra={"peer_id": peer_id},
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            context.notifier.notify(HISTORY_FAILED, str(exc))

        if generation != self._generation:
            # Another conversation was opened while the history was loading.
            return

        self.timeline.load(message.with_updates(conversation_peer_id=peer_id) for message in history)
        reconciler.release()
        logger.info("Conversation opened", extra={"peer_id": peer_id, "messages": len(self.timeline)})
        if self._viewing:
            await self._acknowledge_unread()

    async def close(self) -> None:
        self._generation += 1
        await self._teardown()

    async def _teardown(self) -> None:
        reconciler, self._reconciler = self._reconciler, None
        typing, self._typing = self._typing, None
        self._pipeline = None
        if reconciler is not None:
            await reconciler.detach()
        if typing is not None:
            await typing.cancel()
        if self.recorder is not None:
            await self.recorder.close()
        self.compose.reset()
        self.timeline.clear()
        if self._peer_id is not None:
            self._context.previews.revoke_all()
            logger.info("Conversation closed", extra={"peer_id": self._peer_id})
        self._peer_id = None

    async def set_viewing(self, viewing: bool) -> None:
        """Record whether the conversation is visible; becoming visible marks it read."""

        was_viewing, self._viewing = self._viewing, viewing
        if viewing and not was_viewing and self.is_open:
            await self._acknowledge_unread()

    async def _acknowledge_unread(self) -> None:
        peer_id = self._peer_id
        if peer_id is None:
            return

        def unread(message: Message) -> bool:
            return message.sender_id == peer_id and message.delivery_state is not DeliveryState.READ

        if not any(unread(message) for message in self.timeline):
            return
        try:
            await self._context.service.acknowledge_read(peer_id)
        except TransientNetworkError:
            read_acks_total.labels("failed").inc()
            logger.warning("Read acknowledgement failed", extra={"peer_id": peer_id})
            return
        read_acks_total.labels("sent").inc()
        self.timeline.update_where(
            unread,
            lambda message: message.with_updates(delivery_state=DeliveryState.READ),
        )

    def _peer_typing_changed(self, typing: bool) -> None:
        if self.on_peer_typing is not None:
            self.on_peer_typing(typing)

    def _event_applied(self, event: ChannelEvent, outcome: str) -> None:
        if self.on_event is not None:
            self.on_event(event, outcome)

    def _require_pipeline(self) -> SendPipeline:
        if self._pipeline is None:
            raise ChatError("No conversation is open")
        return self._pipeline

    # ------------------------------------------------------------------
    # Composing
    # ------------------------------------------------------------------
    async def on_input(self, text: str) -> None:
        self.compose.text = text
        if self._typing is None:
            return
        if text:
            await self._typing.keystroke()
        else:
            await self._typing.stop()

    def set_reply(self, message_id: str | None) -> None:
        if message_id is not None:
            message = self.timeline.find_by_id(message_id)
            message_id = message.id if message is not None else None
        self.compose.reply_to_id = message_id

    def stage_image(self, data: bytes, content_type: str, file_name: str) -> Attachment:
        preview = self._context.previews.create(data, content_type)
        attachment = Attachment(data=data, content_type=content_type, file_name=file_name, preview=preview)
        self.compose.stage(attachment)
        return attachment

    def discard_image(self) -> None:
        self.compose.discard_attachment()

    async def start_recording(self) -> bool:
        if self.recorder is None:
            self._context.notifier.notify(MIC_DENIED, "No microphone available")
            return False
        try:
            await self.recorder.start()
        except ResourceAcquisitionError as exc:
            logger.warning("Microphone unavailable", exc_info=logger.isEnabledFor(logging.DEBUG))
            self._context.notifier.notify(MIC_DENIED, str(exc))
            return False
        return True

    async def stop_recording(self) -> PendingRecording:
        if self.recorder is None:
            raise ChatError("No microphone configured")
        return await self.recorder.stop()

    async def cancel_recording(self) -> None:
        if self.recorder is not None:
            await self.recorder.cancel()

    async def send(
        self,
        text: str | None = None,
        *,
        attachment: Attachment | None = None,
        reply_to_id: str | None = None,
        shared_post_id: str | None = None,
    ) -> Message | None:
        return await self._require_pipeline().send(
            text,
            attachment=attachment,
            reply_to_id=reply_to_id,
            shared_post_id=shared_post_id,
        )

    # ------------------------------------------------------------------
    # Message actions
    # ------------------------------------------------------------------
    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        return await self._require_pipeline().toggle_reaction(message_id, emoji)

    async def edit_message(self, message_id: str, text: str) -> bool:
        return await self._require_pipeline().edit_message(message_id, text)

    async def delete_message(self, message_id: str) -> bool:
        return await self._require_pipeline().delete_message(message_id)

    async def clear_conversation(self) -> bool:
        return await self._require_pipeline().clear_conversation()

    def reaction_groups(self, message_id: str) -> list[ReactionGroup]:
        message = self.timeline.find_by_id(message_id)
        if message is None:
            return []
        return aggregate_reactions(message.reactions, self._context.local_user_id)

    def scroll_to(self, message_id: str) -> ScrollAnchor | None:
        anchor = self.timeline.scroll_anchor(message_id)
        if anchor is None:
            self._context.notifier.notify(MESSAGE_NOT_LOADED, message_id)
        return anchor


__all__ = ["ChatContext", "ChatSession"]
