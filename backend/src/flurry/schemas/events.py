"""Payloads exchanged over the live event channel."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .messages import Message, Reaction, _reference_id

MESSAGE_RECEIVED = "message-received"
READ_RECEIPT = "read-receipt"
REACTION_UPDATED = "reaction-updated"
TYPING_STARTED = "typing-started"
TYPING_STOPPED = "typing-stopped"
MESSAGES_DELIVERED = "messages-delivered"
MESSAGE_EDITED = "message-edited"
MESSAGE_DELETED = "message-deleted"

# Socket event names emitted by the legacy web backend.
LEGACY_EVENT_NAMES = {
    "receiveMessage": MESSAGE_RECEIVED,
    "messagesSeen": READ_RECEIPT,
    "messageReaction": REACTION_UPDATED,
    "typing": TYPING_STARTED,
    "stop typing": TYPING_STOPPED,
    "messageDelivered": MESSAGES_DELIVERED,
    "messagesDelivered": MESSAGES_DELIVERED,
    "messageUpdated": MESSAGE_EDITED,
    "messageDeleted": MESSAGE_DELETED,
}


class _EventPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class MessageReceived(_EventPayload):
    message: Message

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_message(cls, data: Any) -> Any:
        # The legacy backend emits the message document itself.
        if isinstance(data, dict) and "message" not in data:
            return {"message": data}
        return data


class ReadReceipt(_EventPayload):
    by_user_id: str = Field(validation_alias=AliasChoices("by_user_id", "byUserId"))

    @field_validator("by_user_id", mode="before")
    @classmethod
    def coerce_user(cls, value: Any) -> Any:
        return _reference_id(value)


class ReactionUpdated(_EventPayload):
    message_id: str = Field(validation_alias=AliasChoices("message_id", "messageId"))
    reactions: tuple[Reaction, ...] = ()

    @field_validator("message_id", mode="before")
    @classmethod
    def coerce_message(cls, value: Any) -> Any:
        return _reference_id(value)


class TypingSignal(_EventPayload):
    from_user_id: str | None = Field(
        default=None, validation_alias=AliasChoices("from_user_id", "fromUserId", "from")
    )

    @field_validator("from_user_id", mode="before")
    @classmethod
    def coerce_user(cls, value: Any) -> Any:
        return _reference_id(value)


class MessagesDelivered(_EventPayload):
    to_user_id: str = Field(validation_alias=AliasChoices("to_user_id", "toUserId"))
    message_id: str | None = Field(default=None, validation_alias=AliasChoices("message_id", "messageId"))

    @field_validator("to_user_id", "message_id", mode="before")
    @classmethod
    def coerce_reference(cls, value: Any) -> Any:
        return _reference_id(value)


class MessageEdited(_EventPayload):
    message_id: str = Field(validation_alias=AliasChoices("message_id", "messageId"))
    text: str = Field(validation_alias=AliasChoices("text", "newText"))


class MessageDeleted(_EventPayload):
    message_id: str = Field(validation_alias=AliasChoices("message_id", "messageId"))


PAYLOAD_MODELS: dict[str, type[_EventPayload]] = {
    MESSAGE_RECEIVED: MessageReceived,
    READ_RECEIPT: ReadReceipt,
    REACTION_UPDATED: ReactionUpdated,
    TYPING_STARTED: TypingSignal,
    TYPING_STOPPED: TypingSignal,
    MESSAGES_DELIVERED: MessagesDelivered,
    MESSAGE_EDITED: MessageEdited,
    MESSAGE_DELETED: MessageDeleted,
}


def normalise_event_type(name: Any) -> str | None:
    if not isinstance(name, str):
        return None
    name = LEGACY_EVENT_NAMES.get(name, name)
    return name if name in PAYLOAD_MODELS else None


class ChannelEvent(BaseModel):
    """Validated inbound event envelope."""

    model_config = ConfigDict(frozen=True)

    type: str
    payload: _EventPayload

    @classmethod
    def parse(cls, raw: Mapping[str, Any]) -> "ChannelEvent | None":
        """Validate a raw ``{"type", "payload"}`` envelope.

        Returns ``None`` for event types the engine does not handle; raises
        ``pydantic.ValidationError`` when a known event carries a bad payload.
        """

        event_type = normalise_event_type(raw.get("type"))
        if event_type is None:
            return None
        payload = raw.get("payload")
        if payload is None:
            payload = {}
        model = PAYLOAD_MODELS[event_type]
        return cls(type=event_type, payload=model.model_validate(payload))


__all__ = [
    "MESSAGE_RECEIVED",
    "READ_RECEIPT",
    "REACTION_UPDATED",
    "TYPING_STARTED",
    "TYPING_STOPPED",
    "MESSAGES_DELIVERED",
    "MESSAGE_EDITED",
    "MESSAGE_DELETED",
    "LEGACY_EVENT_NAMES",
    "ChannelEvent",
    "MessageReceived",
    "ReadReceipt",
    "ReactionUpdated",
    "TypingSignal",
    "MessagesDelivered",
    "MessageEdited",
    "MessageDeleted",
    "normalise_event_type",
]
