from __future__ import annotations

import asyncio
import logging

import pytest

from flurry.realtime.channel import LocalEventChannel
from flurry.realtime.typing import TypingSignaler
from flurry.schemas.events import TYPING_STARTED, TYPING_STOPPED

PEER = "user-peer"


def emitted_types(channel: LocalEventChannel) -> list[str]:
    return [event for event, _ in channel.emitted]


@pytest.mark.anyio("asyncio")
async def test_burst_emits_one_start_and_one_stop_after_idle(channel) -> None:
    signaler = TypingSignaler(channel, PEER, idle_timeout=0.05)

    for _ in range(5):
        await signaler.keystroke()
        await asyncio.sleep(0.01)
    assert emitted_types(channel) == [TYPING_STARTED]

    await asyncio.sleep(0.1)

    assert emitted_types(channel) == [TYPING_STARTED, TYPING_STOPPED]
    assert channel.emitted[0][1] == {"peerId": PEER}
    assert signaler.is_locally_typing is False


@pytest.mark.anyio("asyncio")
async def test_keystrokes_keep_extending_the_idle_window(channel) -> None:
    signaler = TypingSignaler(channel, PEER, idle_timeout=0.05)

    for _ in range(4):
        await signaler.keystroke()
        await asyncio.sleep(0.03)

    assert emitted_types(channel) == [TYPING_STARTED]
    await signaler.stop()


@pytest.mark.anyio("asyncio")
async def test_new_burst_after_stop_emits_start_again(channel) -> None:
    signaler = TypingSignaler(channel, PEER, idle_timeout=10)

    await signaler.keystroke()
    await signaler.stop()
    await signaler.keystroke()
    await signaler.stop()

    assert emitted_types(channel) == [TYPING_STARTED, TYPING_STOPPED, TYPING_STARTED, TYPING_STOPPED]


@pytest.mark.anyio("asyncio")
async def test_stop_without_typing_emits_nothing(channel) -> None:
    signaler = TypingSignaler(channel, PEER)

    await signaler.stop()
    await signaler.cancel()

    assert channel.emitted == []


@pytest.mark.anyio("asyncio")
async def test_cancel_emits_stop_and_leaves_no_timer(channel) -> None:
    signaler = TypingSignaler(channel, PEER, idle_timeout=0.05)

    await signaler.keystroke()
    await signaler.cancel()
    await asyncio.sleep(0.1)

    assert emitted_types(channel) == [TYPING_STARTED, TYPING_STOPPED]


@pytest.mark.anyio("asyncio")
async def test_closed_channel_is_logged_once(caplog) -> None:
    channel = LocalEventChannel()
    await channel.close()
    signaler = TypingSignaler(channel, PEER, idle_timeout=10)

    with caplog.at_level(logging.WARNING):
        await signaler.keystroke()
        await signaler.stop()

    warnings = [record for record in caplog.records if "typing indicator skipped" in record.getMessage()]
    assert len(warnings) == 1
    assert signaler.is_locally_typing is False
