from __future__ import annotations

from enum import Enum


class MessageKind(str, Enum):
    """Content categories a direct message can carry."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    SHARED_POST = "shared_post"
    POLL = "poll"
    STORY_REPLY = "story_reply"
    SYSTEM = "system"


class DeliveryState(str, Enum):
    """Delivery progress of a message, ordered from least to most advanced."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _DELIVERY_ORDER.index(self)

    def advance(self, target: "DeliveryState") -> "DeliveryState":
        """Return whichever of ``self`` and ``target`` is further along."""

        return target if target.rank > self.rank else self


_DELIVERY_ORDER = (
    DeliveryState.PENDING,
    DeliveryState.SENT,
    DeliveryState.DELIVERED,
    DeliveryState.READ,
)


class RecorderState(str, Enum):
    """Lifecycle of the media capture unit."""

    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"
