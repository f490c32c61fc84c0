import json
from typing import List

import pytest

from grubby_chat.schemas.events import MESSAGES_CREATED_CHANNEL, PARTICIPANTS_UPDATED_CHANNEL
from grubby_chat.services.chat_service import ChatService, NotParticipantError
from grubby_chat.services.unread_reconciler import UnreadCountReconciler


@pytest.fixture
def chat(messages, participants, bus) -> ChatService:
    return ChatService(messages, participants, bus)


async def record(bus, channel: str) -> List[dict]:
    received: List[dict] = []

    async def on_message(raw: str) -> None:
        received.append(json.loads(raw))

    await bus.subscribe(channel, on_message)
    return received


async def test_create_room_adds_every_member(chat, participants) -> None:
    room = await chat.create_room("alice", ["bob", "carol", "bob", "alice"])

    assert room["participants"] == ["alice", "bob", "carol"]
    members = sorted(user_id for (room_id, user_id) in participants.rows if room_id == room["room_id"])
    assert members == ["alice", "bob", "carol"]
    for user_id in members:
        participant = await participants.get(room["room_id"], user_id)
        assert participant["last_read_at"] is None


async def test_create_room_requires_another_member(chat) -> None:
    with pytest.raises(ValueError):
        await chat.create_room("alice", ["alice"])


async def test_send_message_stores_and_publishes(chat, participants, messages, bus) -> None:
    participants.join("room-a", "alice")
    participants.join("room-a", "bob")
    published = await record(bus, MESSAGES_CREATED_CHANNEL)

    saved = await chat.send_message("room-a", "bob", "  table for two?  ")

    assert saved["content"] == "table for two?"
    assert len(messages.messages) == 1
    assert published == [
        {
            "type": "message_created",
            "room_id": "room-a",
            "sender_id": "bob",
            "created_at": saved["created_at"].isoformat().replace("+00:00", "Z"),
            "message_id": saved["_id"],
        }
    ]


async def test_send_message_rejects_empty_and_outsiders(chat, participants, messages) -> None:
    participants.join("room-a", "alice")

    with pytest.raises(ValueError):
        await chat.send_message("room-a", "alice", "   ")
    with pytest.raises(NotParticipantError):
        await chat.send_message("room-a", "mallory", "hello")
    assert messages.messages == []


async def test_open_room_moves_marker_and_publishes(chat, participants, bus) -> None:
    participants.join("room-a", "alice")
    published = await record(bus, PARTICIPANTS_UPDATED_CHANNEL)

    participant = await chat.open_room("room-a", "alice")

    assert participant["last_read_at"] is not None
    assert published[0]["type"] == "read_marker_updated"
    assert published[0]["user_id"] == "alice"

    with pytest.raises(NotParticipantError):
        await chat.open_room("room-a", "mallory")


async def test_list_messages_for_participants_only(chat, participants, messages) -> None:
    participants.join("room-a", "alice")
    participants.join("room-a", "bob")
    await chat.send_message("room-a", "bob", "first")
    await chat.send_message("room-a", "alice", "second")

    items, next_cursor = await chat.list_messages("room-a", "alice")
    assert [m["content"] for m in items] == ["first", "second"]
    assert next_cursor is None

    with pytest.raises(NotParticipantError):
        await chat.list_messages("room-a", "mallory")


async def test_live_counter_follows_chat_activity(chat, unread_service, participants, bus) -> None:
    room = await chat.create_room("alice", ["bob"])
    room_id = room["room_id"]
    other = await chat.create_room("carol", ["dave"])
    emitted: List[int] = []
    reconciler = UnreadCountReconciler("alice", unread_service, participants, bus, on_change=emitted.append)
    await reconciler.initialize()

    await chat.send_message(room_id, "bob", "dinner at 8?")
    await chat.send_message(room_id, "alice", "sure")
    await chat.send_message(other["room_id"], "carol", "not for alice")
    await chat.send_message(room_id, "bob", "booked")
    await reconciler.wait_idle()
    assert reconciler.count == 2

    await chat.open_room(room_id, "bob")
    await reconciler.wait_idle()
    assert reconciler.count == 2

    await chat.open_room(room_id, "alice")
    await reconciler.wait_idle()
    assert reconciler.count == 0
    assert emitted == [0, 1, 2, 0]

    await reconciler.teardown()
