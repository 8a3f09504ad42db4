from .enums import DeliveryState, MessageKind, RecorderState

__all__ = ["DeliveryState", "MessageKind", "RecorderState"]
