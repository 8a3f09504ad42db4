"""Exception hierarchy shared by the chat engine and its collaborators."""

from __future__ import annotations


class ChatError(RuntimeError):
    """Base class for errors raised by the chat engine."""


class TransientNetworkError(ChatError):
    """Raised by network collaborators when a request could not complete."""

    def __init__(self, message: str = "Network request failed", *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResourceAcquisitionError(ChatError):
    """Raised when the audio input device cannot be acquired."""


class RecorderBusyError(ChatError):
    """Raised when a recording is started while another one is active or staged."""


class RecorderStateError(ChatError):
    """Raised when a recorder operation is not valid in the current state."""


class PreviewRevokedError(ChatError):
    """Raised when reading a preview handle that was already revoked."""


class ChannelClosedError(ChatError):
    """Raised when emitting on an event channel that has been closed."""


__all__ = [
    "ChatError",
    "TransientNetworkError",
    "ResourceAcquisitionError",
    "RecorderBusyError",
    "RecorderStateError",
    "PreviewRevokedError",
    "ChannelClosedError",
]
