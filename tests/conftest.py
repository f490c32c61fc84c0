import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from grubby_chat.services.unread_service import UnreadService
from grubby_chat.utils.realtime_bus import InMemoryBus


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


class FakeParticipantRepository:
    """In-memory stand-in for the chat_room_participants collection."""

    def __init__(self) -> None:
        self.rows: Dict[tuple, Dict[str, Any]] = {}
        self.fail_list = False
        self.fail_get = False
        self.get_calls = 0

    def join(self, room_id: str, user_id: str, last_read_at: Optional[datetime] = None) -> None:
        self.rows[(room_id, user_id)] = {
            "_id": f"{room_id}:{user_id}",
            "room_id": room_id,
            "user_id": user_id,
            "last_read_at": last_read_at,
            "joined_at": T0,
        }

    async def add(self, room_id: str, user_id: str) -> Dict[str, Any]:
        if (room_id, user_id) not in self.rows:
            self.join(room_id, user_id)
        return dict(self.rows[(room_id, user_id)])

    async def get(self, room_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        self.get_calls += 1
        if self.fail_get:
            raise ConnectionError("participant lookup failed")
        row = self.rows.get((room_id, user_id))
        return dict(row) if row else None

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        if self.fail_list:
            raise ConnectionError("participant listing failed")
        return [
            {"room_id": row["room_id"], "last_read_at": row["last_read_at"]}
            for row in self.rows.values()
            if row["user_id"] == user_id
        ]

    async def mark_read(self, room_id: str, user_id: str, at: datetime) -> Optional[Dict[str, Any]]:
        row = self.rows.get((room_id, user_id))
        if row is None:
            return None
        row["last_read_at"] = at
        return dict(row)


class FakeMessageRepository:
    """In-memory stand-in for the messages collection."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []
        self.failing_rooms: set = set()
        self._ids = itertools.count(1)

    def add(self, room_id: str, sender_id: str, created_at: datetime, content: str = "hi") -> Dict[str, Any]:
        doc = {
            "_id": str(next(self._ids)),
            "room_id": room_id,
            "sender_id": sender_id,
            "content": content,
            "created_at": created_at,
        }
        self.messages.append(doc)
        return doc

    async def save_message(self, room_id: str, sender_id: str, content: str) -> Dict[str, Any]:
        return dict(self.add(room_id, sender_id, datetime.now(timezone.utc), content))

    async def count_unread(self, room_id: str, user_id: str, since: datetime) -> int:
        if room_id in self.failing_rooms:
            raise ConnectionError(f"count failed for {room_id}")
        return sum(
            1
            for m in self.messages
            if m["room_id"] == room_id and m["sender_id"] != user_id and m["created_at"] > since
        )

    async def list_for_room(self, room_id: str, limit: int = 50, cursor: Optional[str] = None):
        items = sorted((m for m in self.messages if m["room_id"] == room_id), key=lambda m: m["created_at"])
        return [dict(m) for m in items[-limit:]], None


@pytest.fixture
def participants() -> FakeParticipantRepository:
    return FakeParticipantRepository()


@pytest.fixture
def messages() -> FakeMessageRepository:
    return FakeMessageRepository()


@pytest.fixture
def unread_service(participants, messages) -> UnreadService:
    return UnreadService(participants, messages)


@pytest.fixture
def bus() -> InMemoryBus:
    return InMemoryBus()


@pytest.fixture
def two_rooms(participants, messages):
    """alice reads room A at minute 10 and room B at minute 30; A holds 3 unread, B none."""
    participants.join("room-a", "alice", last_read_at=at(10))
    participants.join("room-a", "bob")
    participants.join("room-b", "alice", last_read_at=at(30))
    participants.join("room-b", "carol")

    messages.add("room-a", "bob", at(5))
    messages.add("room-a", "bob", at(11))
    messages.add("room-a", "bob", at(12))
    messages.add("room-a", "bob", at(13))
    messages.add("room-a", "alice", at(14))
    messages.add("room-b", "carol", at(20))
    messages.add("room-b", "alice", at(40))
    return participants, messages
