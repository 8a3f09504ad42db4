from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from flurry.chat.ports import HISTORY_FAILED, MESSAGE_NOT_LOADED, MIC_DENIED, SEND_FAILED
from flurry.chat.session import ChatContext, ChatSession
from flurry.models.enums import DeliveryState, MessageKind, RecorderState
from flurry.schemas.events import MESSAGE_RECEIVED, REACTION_UPDATED, READ_RECEIPT, TYPING_STARTED, TYPING_STOPPED
from flurry.schemas.messages import Reaction

LOCAL_USER = "user-me"
PEER = "user-peer"
OTHER_PEER = "user-other"


@pytest.fixture()
def context(service, channel, notifier, microphone, previews, settings) -> ChatContext:
    return ChatContext(
        local_user_id=LOCAL_USER,
        service=service,
        channel=channel,
        notifier=notifier,
        microphone=microphone,
        previews=previews,
        settings=settings,
    )


async def drain(session: ChatSession) -> None:
    await session.reconciler.drain()


@pytest.mark.anyio("asyncio")
async def test_open_loads_history_and_subscribes(context, service, channel, make_message) -> None:
    service.history[PEER] = [make_message("h-2"), make_message("h-1", created_at=datetime(2020, 1, 1, tzinfo=timezone.utc))]
    session = ChatSession(context)

    await session.open(PEER)

    assert session.peer_id == PEER
    assert [message.id for message in session.messages] == ["h-1", "h-2"]
    assert all(message.conversation_peer_id == PEER for message in session.messages)
    assert channel.subscriber_count == 1
    await session.close()
    assert channel.subscriber_count == 0


@pytest.mark.anyio("asyncio")
async def test_open_acknowledges_unread_history(context, service, make_message) -> None:
    service.history[PEER] = [make_message("h-1", delivery_state=DeliveryState.DELIVERED)]
    session = ChatSession(context)

    await session.open(PEER)

    assert service.read_acks == [PEER]
    assert session.messages[0].delivery_state is DeliveryState.READ
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_history_failure_notifies_and_leaves_empty_timeline(context, service, notifier, channel) -> None:
    service.failing.add("fetch_history")
    session = ChatSession(context)

    await session.open(PEER)

    assert session.messages == ()
    assert notifier.kinds == [HISTORY_FAILED]
    assert channel.subscriber_count == 1
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_peer_message_while_open_is_acknowledged_exactly_once(context, service, channel) -> None:
    session = ChatSession(context)
    await session.open(PEER)

    await channel.deliver({"type": MESSAGE_RECEIVED, "payload": {"_id": "m-1", "sender": PEER, "receiver": LOCAL_USER}})
    await drain(session)

    assert [message.id for message in session.messages] == ["m-1"]
    assert service.read_acks == [PEER]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_hidden_conversation_is_acknowledged_when_viewed(context, service, channel) -> None:
    session = ChatSession(context)
    await session.open(PEER)
    await session.set_viewing(False)

    await channel.deliver({"type": MESSAGE_RECEIVED, "payload": {"_id": "m-1", "sender": PEER, "receiver": LOCAL_USER}})
    await drain(session)
    assert service.read_acks == []

    await session.set_viewing(True)

    assert service.read_acks == [PEER]
    assert session.messages[0].delivery_state is DeliveryState.READ
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_switching_conversation_discards_old_state(context, service, channel, previews, microphone, make_message) -> None:
    service.history[PEER] = [make_message("p-1")]
    service.history[OTHER_PEER] = [make_message("o-1", sender_id=OTHER_PEER)]
    session = ChatSession(context)
    await session.open(PEER)
    await session.on_input("typing...")
    session.stage_image(b"png", "image/png", "a.png")
    await session.start_recording()

    await session.open(OTHER_PEER)

    assert [message.id for message in session.messages] == ["o-1"]
    assert channel.subscriber_count == 1
    assert previews.live_count == 0
    assert microphone.open_inputs == []
    assert session.recorder.state is RecorderState.IDLE
    assert session.compose.text == ""
    assert [event for event, _ in channel.emitted] == [TYPING_STARTED, TYPING_STOPPED]

    await channel.deliver({"type": MESSAGE_RECEIVED, "payload": {"_id": "late", "sender": PEER, "receiver": LOCAL_USER}})
    await drain(session)
    assert "late" not in session.timeline
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_switch_during_history_load_keeps_latest_conversation(context, service, channel, make_message) -> None:
    service.history[PEER] = [make_message("p-1")]
    service.history[OTHER_PEER] = [make_message("o-1", sender_id=OTHER_PEER)]
    service.history_gate = asyncio.Event()
    session = ChatSession(context)

    first = asyncio.create_task(session.open(PEER))
    await asyncio.sleep(0)
    second = asyncio.create_task(session.open(OTHER_PEER))
    await asyncio.sleep(0)
    service.history_gate.set()
    await asyncio.gather(first, second)

    assert session.peer_id == OTHER_PEER
    assert [message.id for message in session.messages] == ["o-1"]
    assert channel.subscriber_count == 1
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_send_echo_and_confirmation_leave_a_single_record(context, service, channel) -> None:
    session = ChatSession(context)
    await session.open(PEER)
    service.submit_gate = asyncio.Event()

    task = asyncio.create_task(session.send("hello"))
    await asyncio.sleep(0)
    await channel.deliver(
        {"type": MESSAGE_RECEIVED, "payload": {"_id": "srv-1", "sender": LOCAL_USER, "receiver": PEER, "text": "hello"}}
    )
    await drain(session)
    assert len(session.messages) == 2

    service.submit_gate.set()
    confirmed = await task

    assert confirmed.id == "srv-1"
    assert [message.id for message in session.messages] == ["srv-1"]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_read_receipt_after_send(context, channel) -> None:
    session = ChatSession(context)
    await session.open(PEER)

    confirmed = await session.send("hello")
    await channel.deliver({"type": READ_RECEIPT, "payload": {"byUserId": PEER}})
    await drain(session)

    assert session.timeline.find_by_id(confirmed.id).delivery_state is DeliveryState.READ
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_send_failure_notifies(context, service, notifier) -> None:
    session = ChatSession(context)
    await session.open(PEER)
    service.failing.add("submit_message")

    await session.send("hello")

    assert session.messages == ()
    assert notifier.kinds == [SEND_FAILED]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_voice_message_flow(context, service, microphone, previews) -> None:
    session = ChatSession(context)
    await session.open(PEER)

    assert await session.start_recording() is True
    microphone.latest.feed(b"voice")
    await asyncio.sleep(0.01)
    await session.stop_recording()
    confirmed = await session.send()

    assert confirmed.kind is MessageKind.AUDIO
    assert service.submitted[0].attachment.content_type == "audio/webm"
    assert previews.live_count == 0
    assert microphone.open_inputs == []
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_cancel_recording_releases_device(context, microphone, previews) -> None:
    session = ChatSession(context)
    await session.open(PEER)

    await session.start_recording()
    await session.cancel_recording()

    assert microphone.open_inputs == []
    assert previews.live_count == 0
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_denied_microphone_notifies(context, microphone, notifier) -> None:
    microphone.deny = True
    session = ChatSession(context)
    await session.open(PEER)

    assert await session.start_recording() is False

    assert notifier.kinds == [MIC_DENIED]
    assert session.recorder.state is RecorderState.IDLE
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_reaction_toggle_and_groups(context, service, channel, make_message) -> None:
    service.history[PEER] = [make_message("m-1", reactions=[Reaction(user_id=PEER, emoji="🔥")])]
    session = ChatSession(context)
    await session.open(PEER)

    await session.toggle_reaction("m-1", "🔥")
    groups = session.reaction_groups("m-1")

    assert [(group.emoji, group.count, group.did_local_user_react) for group in groups] == [("🔥", 2, True)]

    await channel.deliver({"type": REACTION_UPDATED, "payload": {"messageId": "m-1", "reactions": []}})
    await drain(session)
    assert session.reaction_groups("m-1") == []
    assert session.reaction_groups("missing") == []
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_scroll_to_missing_message_notifies(context, service, notifier, make_message) -> None:
    service.history[PEER] = [make_message("m-1")]
    session = ChatSession(context)
    await session.open(PEER)

    anchor = session.scroll_to("m-1")
    missing = session.scroll_to("old")

    assert anchor is not None and anchor.index == 0
    assert session.timeline.highlighted_id == "m-1"
    assert missing is None
    assert notifier.notifications == [(MESSAGE_NOT_LOADED, "old")]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_peer_typing_callback(context, channel) -> None:
    changes: list[bool] = []
    session = ChatSession(context)
    session.on_peer_typing = changes.append
    await session.open(PEER)

    await channel.deliver({"type": TYPING_STARTED, "payload": {"fromUserId": PEER}})
    await drain(session)

    assert session.peer_is_typing is True
    await session.close()
    assert changes == [True, False]


@pytest.mark.anyio("asyncio")
async def test_actions_require_an_open_conversation(context) -> None:
    session = ChatSession(context)

    with pytest.raises(RuntimeError):
        await session.send("hello")


@pytest.mark.anyio("asyncio")
async def test_edit_delete_and_clear(context, service, make_message) -> None:
    service.history[PEER] = [make_message("mine", sender_id=LOCAL_USER), make_message("theirs")]
    session = ChatSession(context)
    await session.open(PEER)

    assert await session.edit_message("mine", "edited") is True
    assert await session.delete_message("theirs") is False
    assert await session.delete_message("mine") is True
    assert await session.clear_conversation() is True

    assert session.messages == ()
    assert service.edits == [("mine", "edited")]
    assert service.deletes == ["mine"]
    assert service.cleared == [PEER]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_reply_target_must_be_loaded(context, service, make_message) -> None:
    service.history[PEER] = [make_message("m-1")]
    session = ChatSession(context)
    await session.open(PEER)

    session.set_reply("missing")
    assert session.compose.reply_to_id is None

    session.set_reply("m-1")
    confirmed = await session.send("answer")

    assert confirmed.reply_to_id == "m-1"
    assert session.compose.reply_to_id is None
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_discarding_a_staged_image_revokes_its_preview(context, previews) -> None:
    session = ChatSession(context)
    await session.open(PEER)

    first = session.stage_image(b"a", "image/png", "a.png")
    second = session.stage_image(b"b", "image/png", "b.png")
    assert first.preview.revoked is True
    assert previews.live_count == 1

    session.discard_image()

    assert second.preview.revoked is True
    assert previews.live_count == 0
    assert await session.send() is None
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_events_during_history_load_are_applied_after_it(context, service, channel, make_message) -> None:
    service.history[PEER] = [make_message("h-1", delivery_state=DeliveryState.READ)]
    service.history_gate = asyncio.Event()
    session = ChatSession(context)

    opening = asyncio.create_task(session.open(PEER))
    await asyncio.sleep(0)
    assert channel.subscriber_count == 1

    await channel.deliver(
        {"type": MESSAGE_RECEIVED, "payload": {"_id": "live-1", "sender": PEER, "receiver": LOCAL_USER, "text": "fresh"}}
    )
    await channel.deliver(
        {"type": REACTION_UPDATED, "payload": {"messageId": "h-1", "reactions": [{"user": PEER, "emoji": "👍"}]}}
    )
    await channel.deliver(
        {"type": MESSAGE_RECEIVED, "payload": {"_id": "h-1", "sender": PEER, "receiver": LOCAL_USER, "text": "again"}}
    )
    assert len(session.messages) == 0

    service.history_gate.set()
    await opening
    await drain(session)

    assert [message.id for message in session.messages] == ["h-1", "live-1"]
    assert session.messages[0].reactions == (Reaction(user_id=PEER, emoji="👍"),)
    assert session.messages[1].delivery_state is DeliveryState.READ
    assert service.read_acks == [PEER]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_events_during_failed_history_load_are_still_applied(context, service, channel, notifier) -> None:
    service.failing.add("fetch_history")
    service.history_gate = asyncio.Event()
    session = ChatSession(context)

    opening = asyncio.create_task(session.open(PEER))
    await asyncio.sleep(0)
    await channel.deliver(
        {"type": MESSAGE_RECEIVED, "payload": {"_id": "live-1", "sender": PEER, "receiver": LOCAL_USER, "text": "hi"}}
    )
    service.history_gate.set()
    await opening
    await drain(session)

    assert notifier.kinds == [HISTORY_FAILED]
    assert [message.id for message in session.messages] == ["live-1"]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_close_revokes_outstanding_previews(context, previews) -> None:
    session = ChatSession(context)
    await session.open(PEER)
    orphan = previews.create(b"png", "image/png")

    await session.close()

    assert orphan.revoked is True
    assert previews.live_count == 0


@pytest.mark.anyio("asyncio")
async def test_event_observer_sees_every_outcome(context, channel) -> None:
    seen: list[tuple[str, str]] = []
    session = ChatSession(context)
    session.on_event = lambda event, outcome: seen.append((event.type, outcome))
    await session.open(PEER)

    await channel.deliver({"type": TYPING_STARTED, "payload": {"from": PEER}})
    await channel.deliver({"type": READ_RECEIPT, "payload": {"byUserId": OTHER_PEER}})
    await drain(session)

    assert seen == [(TYPING_STARTED, "applied"), (READ_RECEIPT, "ignored")]
    await session.close()
