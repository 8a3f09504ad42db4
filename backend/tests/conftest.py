"""Shared pytest fixtures and fakes for the chat engine tests."""

from __future__ import annotations

import asyncio
import itertools
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from flurry.config import Settings
from flurry.errors import ResourceAcquisitionError, TransientNetworkError
from flurry.media.previews import PreviewRegistry
from flurry.models.enums import DeliveryState
from flurry.monitoring.registry import registry
from flurry.realtime.channel import LocalEventChannel
from flurry.schemas.messages import Message, OutgoingMessage

LOCAL_USER = "user-me"
PEER = "user-peer"
OTHER_PEER = "user-other"

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RecordingService:
    """In-memory message service that records every call."""

    def __init__(self, local_user_id: str = LOCAL_USER) -> None:
        self.local_user_id = local_user_id
        self.history: dict[str, list[Message]] = {}
        self.submitted: list[OutgoingMessage] = []
        self.read_acks: list[str] = []
        self.reactions: list[tuple[str, str]] = []
        self.edits: list[tuple[str, str]] = []
        self.deletes: list[str] = []
        self.cleared: list[str] = []
        self.failing: set[str] = set()
        self.submit_gate: asyncio.Event | None = None
        self.history_gate: asyncio.Event | None = None
        self._ids = itertools.count(1)

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing:
            raise TransientNetworkError(f"{operation} failed", status_code=503)

    async def fetch_history(self, peer_id: str) -> list[Message]:
        if self.history_gate is not None:
            await self.history_gate.wait()
        self._maybe_fail("fetch_history")
        return list(self.history.get(peer_id, []))

    async def submit_message(self, payload: OutgoingMessage) -> Message:
        self.submitted.append(payload)
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        self._maybe_fail("submit_message")
        return Message(
            id=f"srv-{next(self._ids)}",
            sender_id=self.local_user_id,
            recipient_id=payload.recipient_id,
            kind=payload.kind,
            body=payload.text,
            attachment_ref=f"https://cdn.example/{payload.attachment.file_name}" if payload.attachment else None,
            reply_to_id=payload.reply_to_id,
            shared_post_id=payload.shared_post_id,
            delivery_state=DeliveryState.SENT,
        )

    async def acknowledge_read(self, peer_id: str) -> None:
        self.read_acks.append(peer_id)
        self._maybe_fail("acknowledge_read")

    async def toggle_reaction(self, message_id: str, emoji: str) -> None:
        self.reactions.append((message_id, emoji))
        self._maybe_fail("toggle_reaction")

    async def edit_message(self, message_id: str, text: str) -> None:
        self.edits.append((message_id, text))
        self._maybe_fail("edit_message")

    async def delete_message(self, message_id: str) -> None:
        self.deletes.append(message_id)
        self._maybe_fail("delete_message")

    async def clear_conversation(self, peer_id: str) -> None:
        self.cleared.append(peer_id)
        self._maybe_fail("clear_conversation")


class RecordingNotifier:
    def __init__(self) -> None:
        self.notifications: list[tuple[str, str | None]] = []

    def notify(self, kind: str, detail: str | None = None) -> None:
        self.notifications.append((kind, detail))

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.notifications]


class FakeAudioInput:
    def __init__(self, tail: bytes = b"") -> None:
        self._chunks: asyncio.Queue[bytes] = asyncio.Queue()
        self._tail = tail
        self.closed = False
        self.close_calls = 0
        self.flush_error: Exception | None = None
        self.close_error: Exception | None = None

    def feed(self, chunk: bytes) -> None:
        self._chunks.put_nowait(chunk)

    async def read(self) -> bytes:
        return await self._chunks.get()

    async def flush(self) -> bytes:
        if self.flush_error is not None:
            raise self.flush_error
        tail, self._tail = self._tail, b""
        return tail

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeMicrophone:
    """Microphone that tracks every input it hands out."""

    def __init__(self) -> None:
        self.inputs: list[FakeAudioInput] = []
        self.deny = False
        self.open_gate: asyncio.Event | None = None
        self.open_error: Exception | None = None
        self.tail = b""

    @property
    def open_inputs(self) -> list[FakeAudioInput]:
        return [audio_input for audio_input in self.inputs if not audio_input.closed]

    @property
    def latest(self) -> FakeAudioInput:
        return self.inputs[-1]

    async def open(self) -> FakeAudioInput:
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.deny:
            raise ResourceAcquisitionError("Permission denied")
        if self.open_error is not None:
            raise self.open_error
        audio_input = FakeAudioInput(tail=self.tail)
        self.inputs.append(audio_input)
        return audio_input


async def settle(rounds: int = 5) -> None:
    """Let tasks scheduled on the loop run."""

    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    registry.reset()
    yield
    registry.reset()


@pytest.fixture()
def service() -> RecordingService:
    return RecordingService()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def channel() -> LocalEventChannel:
    return LocalEventChannel()


@pytest.fixture()
def previews() -> PreviewRegistry:
    return PreviewRegistry()


@pytest.fixture()
def microphone() -> FakeMicrophone:
    return FakeMicrophone()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        typing_idle_timeout_seconds=0.05,
        highlight_duration_seconds=0.05,
        recording_tick_seconds=0.01,
    )


@pytest.fixture()
def make_message() -> Callable[..., Message]:
    """Build timeline records with increasing timestamps."""

    counter = itertools.count(1)

    def factory(
        message_id: str | None = None,
        *,
        sender_id: str = PEER,
        recipient_id: str | None = None,
        **fields: Any,
    ) -> Message:
        index = next(counter)
        if recipient_id is None:
            recipient_id = LOCAL_USER if sender_id != LOCAL_USER else PEER
        fields.setdefault("body", f"message {index}")
        fields.setdefault("created_at", BASE_TIME + timedelta(seconds=index))
        return Message(
            id=message_id or f"m-{index}",
            sender_id=sender_id,
            recipient_id=recipient_id,
            **fields,
        )

    return factory


@pytest.fixture()
def settle_loop() -> Callable[..., Any]:
    return settle
