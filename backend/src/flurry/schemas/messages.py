"""Schemas related to direct messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models.enums import DeliveryState, MessageKind

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from ..media.previews import PreviewHandle


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _reference_id(value: Any) -> Any:
    """Collapse populated documents (``{"_id": ...}``) to their identifier."""

    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
    if value is None or value == "":
        return None
    return str(value)


class Reaction(BaseModel):
    """A single user's reaction to a message."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId", "user"))
    emoji: str = Field(..., min_length=1, max_length=32)

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user(cls, value: Any) -> Any:
        return _reference_id(value)


class Message(BaseModel):
    """A record in the conversation timeline.

    Accepts both the engine's own field names and the camel/legacy names used
    by the message API (``_id``, ``sender``, ``message_type``...).
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    sender_id: str = Field(validation_alias=AliasChoices("sender_id", "senderId", "sender"))
    recipient_id: str | None = Field(
        default=None, validation_alias=AliasChoices("recipient_id", "recipientId", "receiver")
    )
    conversation_peer_id: str | None = Field(
        default=None, validation_alias=AliasChoices("conversation_peer_id", "conversationPeerId")
    )
    kind: MessageKind = Field(
        default=MessageKind.TEXT, validation_alias=AliasChoices("kind", "message_type", "messageType")
    )
    body: str | None = Field(default=None, validation_alias=AliasChoices("body", "text"))
    attachment_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("attachment_ref", "attachmentRef", "media_url")
    )
    reply_to_id: str | None = Field(
        default=None, validation_alias=AliasChoices("reply_to_id", "replyToId", "replyTo")
    )
    shared_post_id: str | None = Field(
        default=None, validation_alias=AliasChoices("shared_post_id", "sharedPostId")
    )
    reactions: tuple[Reaction, ...] = ()
    delivery_state: DeliveryState = Field(
        default=DeliveryState.SENT,
        validation_alias=AliasChoices("delivery_state", "deliveryState", "status"),
    )
    created_at: datetime = Field(
        default_factory=utcnow, validation_alias=AliasChoices("created_at", "createdAt")
    )
    is_deleted: bool = Field(default=False, validation_alias=AliasChoices("is_deleted", "isDeleted"))
    is_edited: bool = Field(default=False, validation_alias=AliasChoices("is_edited", "isEdited"))

    @model_validator(mode="before")
    @classmethod
    def derive_delivery_state(cls, data: Any) -> Any:
        # The API reports progress as two booleans instead of a state name.
        if not isinstance(data, dict):
            return data
        if any(key in data for key in ("delivery_state", "deliveryState", "status")):
            return data
        if data.get("read"):
            return {**data, "delivery_state": DeliveryState.READ}
        if data.get("delivered"):
            return {**data, "delivery_state": DeliveryState.DELIVERED}
        return data

    @field_validator(
        "id", "sender_id", "recipient_id", "reply_to_id", "shared_post_id", mode="before"
    )
    @classmethod
    def coerce_reference(cls, value: Any) -> Any:
        return _reference_id(value)

    @field_validator("attachment_ref", mode="before")
    @classmethod
    def blank_attachment(cls, value: Any) -> Any:
        return value or None

    @field_validator("kind", mode="before")
    @classmethod
    def legacy_kind(cls, value: Any) -> Any:
        if value == "poll_reference":
            return MessageKind.POLL
        return value

    @field_validator("created_at")
    @classmethod
    def ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_pending(self) -> bool:
        return self.delivery_state is DeliveryState.PENDING

    def with_updates(self, **changes: Any) -> "Message":
        if "reactions" in changes:
            changes["reactions"] = tuple(changes["reactions"])
        return self.model_copy(update=changes)


class ReactionGroup(BaseModel):
    """Aggregated reaction information for rendering a message."""

    model_config = ConfigDict(frozen=True)

    emoji: str
    count: int = Field(..., ge=0, description="Total reactions with the emoji")
    did_local_user_react: bool = Field(
        default=False,
        description="Indicates whether the local user added this reaction",
    )
    user_ids: tuple[str, ...] = Field(
        default=(),
        description="Identifiers of users who added this reaction, in first-seen order",
    )


@dataclass(slots=True)
class Attachment:
    """Binary payload staged for upload together with a message."""

    data: bytes
    content_type: str
    file_name: str
    preview: "PreviewHandle | None" = None


@dataclass(slots=True)
class OutgoingMessage:
    """Submission payload handed to the message service."""

    recipient_id: str
    kind: MessageKind
    client_id: str
    text: str | None = None
    attachment: Attachment | None = None
    reply_to_id: str | None = None
    shared_post_id: str | None = None
