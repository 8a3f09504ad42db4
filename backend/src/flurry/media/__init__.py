"""Media capture and preview handling."""

from .capture import AudioInput, MediaCaptureUnit, MicrophoneProvider, PendingRecording
from .previews import PreviewHandle, PreviewRegistry

__all__ = [
    "AudioInput",
    "MediaCaptureUnit",
    "MicrophoneProvider",
    "PendingRecording",
    "PreviewHandle",
    "PreviewRegistry",
]
