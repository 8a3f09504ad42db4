"""Realtime channel adapters, typing presence and event reconciliation."""

from .channel import EventChannel, FanOutChannel, LocalEventChannel, Subscription
from .reconciler import RemoteEventReconciler
from .typing import TypingSignaler
from .websocket import WebSocketEventChannel

__all__ = [
    "EventChannel",
    "FanOutChannel",
    "LocalEventChannel",
    "RemoteEventReconciler",
    "Subscription",
    "TypingSignaler",
    "WebSocketEventChannel",
]
