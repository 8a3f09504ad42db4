"""Metric definitions for the chat synchronisation engine."""

from __future__ import annotations

from .registry import registry


messages_sent_total = registry.counter(
    "chat_messages_sent_total",
    "Optimistic sends by final outcome.",
    label_names=("outcome",),
)

realtime_events_total = registry.counter(
    "chat_realtime_events_total",
    "Inbound channel events processed by the reconciler.",
    label_names=("event", "outcome"),
)

reaction_toggles_total = registry.counter(
    "chat_reaction_toggles_total",
    "Local reaction toggles by network outcome.",
    label_names=("outcome",),
)

read_acks_total = registry.counter(
    "chat_read_acks_total",
    "Read acknowledgements sent for the open conversation.",
    label_names=("outcome",),
)

active_recordings = registry.gauge(
    "chat_active_recordings",
    "Audio input devices currently held by a capture unit.",
)

live_preview_handles = registry.gauge(
    "chat_live_preview_handles",
    "Preview handles created and not yet revoked.",
)
