"""Network adapters for the chat engine."""

from .http import HttpMessageService, TokenProvider

__all__ = ["HttpMessageService", "TokenProvider"]
