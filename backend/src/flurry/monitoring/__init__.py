"""Monitoring helpers and metric registry for the chat engine."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
