"""Microphone capture with cancel/replace semantics."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Protocol

from ..errors import RecorderBusyError, RecorderStateError, ResourceAcquisitionError
from ..models.enums import RecorderState
from ..monitoring.metrics import active_recordings
from ..schemas.messages import Attachment
from .previews import PreviewHandle, PreviewRegistry

logger = logging.getLogger(__name__)


class AudioInput(Protocol):
    """An open microphone stream."""

    async def read(self) -> bytes:
        """Wait for the next encoded chunk; ``b""`` signals end of stream."""

    async def flush(self) -> bytes:
        """Return data buffered by the encoder but not yet read."""

    async def close(self) -> None: ...


class MicrophoneProvider(Protocol):
    async def open(self) -> AudioInput:
        """Acquire the input device; raise ``ResourceAcquisitionError`` or ``OSError`` on denial."""


@dataclass(slots=True)
class PendingRecording:
    """A finished recording waiting to be sent or discarded."""

    blob: bytes
    content_type: str
    duration_seconds: int
    preview: PreviewHandle

    def as_attachment(self, file_name: str) -> Attachment:
        return Attachment(
            data=self.blob,
            content_type=self.content_type,
            file_name=file_name,
            preview=self.preview,
        )


class MediaCaptureUnit:
    """Record microphone audio into a single blob.

    The unit holds the input device exclusively between ``start`` and
    ``stop``/``cancel``/``close``. Every acquired device is closed and every
    preview it created is revoked on whichever exit path comes first, unless
    the recording was handed off with ``take``.
    """

    def __init__(
        self,
        microphone: MicrophoneProvider,
        previews: PreviewRegistry,
        *,
        tick_seconds: float = 1.0,
        content_type: str = "audio/webm",
    ) -> None:
        self._microphone = microphone
        self._previews = previews
        self._tick_seconds = tick_seconds
        self._content_type = content_type
        self._state = RecorderState.IDLE
        self._input: AudioInput | None = None
        self._chunks: list[bytes] = []
        self._duration = 0
        self._pending: PendingRecording | None = None
        self._reader: asyncio.Task[None] | None = None
        self._ticker: asyncio.Task[None] | None = None
        self._generation = 0

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is RecorderState.RECORDING

    @property
    def duration_seconds(self) -> int:
        return self._duration

    @property
    def pending(self) -> PendingRecording | None:
        return self._pending

    async def start(self) -> None:
        if self._state is not RecorderState.IDLE:
            raise RecorderBusyError(f"Cannot start recording while {self._state.value}")
        self._state = RecorderState.RECORDING
        self._chunks = []
        self._duration = 0
        self._generation += 1
        generation = self._generation
        try:
            audio_input = await self._microphone.open()
        except OSError as exc:
            self._reset_if_current(generation)
            raise ResourceAcquisitionError("Microphone access was denied") from exc
        except Exception:
            self._reset_if_current(generation)
            raise

        if generation != self._generation:
            # Cancelled while the device was being acquired.
            await audio_input.close()
            return

        self._input = audio_input
        active_recordings.inc()
        self._reader = asyncio.create_task(self._read_loop(audio_input), name="recorder-reader")
        self._ticker = asyncio.create_task(self._tick_loop(), name="recorder-ticker")
        logger.debug("Recording started")

    async def stop(self) -> PendingRecording:
        if self._state is not RecorderState.RECORDING or self._input is None:
            raise RecorderStateError("No active recording to stop")
        audio_input = self._input
        await self._cancel_tasks()
        try:
            try:
                tail = await audio_input.flush()
            finally:
                await self._release_input()
        except Exception:
            self._discard_capture()
            logger.warning("Failed to finish recording; captured audio discarded")
            raise
        if tail:
            self._chunks.append(tail)

        blob = b"".join(self._chunks)
        self._chunks = []
        preview = self._previews.create(blob, self._content_type)
        self._pending = PendingRecording(
            blob=blob,
            content_type=self._content_type,
            duration_seconds=self._duration,
            preview=preview,
        )
        self._state = RecorderState.STOPPED
        logger.debug("Recording stopped", extra={"bytes": len(blob), "duration": self._duration})
        return self._pending

    async def cancel(self) -> None:
        """Discard the active or staged recording and release everything."""

        self._generation += 1
        try:
            await self._cancel_tasks()
            await self._release_input()
        finally:
            if self._pending is not None:
                self._pending.preview.revoke()
                self._pending = None
            self._discard_capture()

    async def close(self) -> None:
        await self.cancel()

    def take(self) -> PendingRecording | None:
        """Hand the staged recording to a new owner without revoking it."""

        pending = self._pending
        if pending is None:
            return None
        self._pending = None
        self._duration = 0
        self._state = RecorderState.IDLE
        return pending

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _read_loop(self, audio_input: AudioInput) -> None:
        while True:
            try:
                chunk = await audio_input.read()
            except OSError:
                logger.warning("Audio input failed; keeping data captured so far", exc_info=True)
                return
            if not chunk:
                return
            self._chunks.append(chunk)

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            self._duration += 1

    async def _cancel_tasks(self) -> None:
        for task in (self._reader, self._ticker):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reader = None
        self._ticker = None

    async def _release_input(self) -> None:
        audio_input = self._input
        if audio_input is None:
            return
        self._input = None
        active_recordings.dec()
        try:
            await audio_input.close()
        except OSError:
            logger.warning("Failed to close audio input", exc_info=logger.isEnabledFor(logging.DEBUG))

    def _discard_capture(self) -> None:
        self._chunks = []
        self._duration = 0
        self._state = RecorderState.IDLE

    def _reset_if_current(self, generation: int) -> None:
        if generation == self._generation:
            self._state = RecorderState.IDLE


__all__ = ["AudioInput", "MicrophoneProvider", "MediaCaptureUnit", "PendingRecording"]
