from .events import (
    ChannelEvent,
    MessageDeleted,
    MessageEdited,
    MessageReceived,
    MessagesDelivered,
    ReactionUpdated,
    ReadReceipt,
    TypingSignal,
)
from .messages import Attachment, Message, OutgoingMessage, Reaction, ReactionGroup

__all__ = [
    "Attachment",
    "ChannelEvent",
    "Message",
    "MessageDeleted",
    "MessageEdited",
    "MessageReceived",
    "MessagesDelivered",
    "OutgoingMessage",
    "Reaction",
    "ReactionGroup",
    "ReactionUpdated",
    "ReadReceipt",
    "TypingSignal",
]
