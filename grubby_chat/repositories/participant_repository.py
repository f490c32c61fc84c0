from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from grubby_chat.models.participant import ParticipantDocument


class ParticipantRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["chat_room_participants"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("room_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
        await self.collection.create_index([("user_id", ASCENDING)])

    async def add(self, room_id: str, user_id: str) -> ParticipantDocument:
        doc: ParticipantDocument = {
            "room_id": room_id,
            "user_id": user_id,
            "last_read_at": None,
            "joined_at": datetime.now(timezone.utc),
        }
        try:
            result = await self.collection.insert_one(doc)
            doc["_id"] = str(result.inserted_id)
        except DuplicateKeyError:
            existing = await self.get(room_id, user_id)
            if existing is not None:
                return existing
            raise
        return doc

    async def get(self, room_id: str, user_id: str) -> Optional[ParticipantDocument]:
        doc = await self.collection.find_one({"room_id": room_id, "user_id": user_id})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        cur = self.collection.find({"user_id": user_id}, {"room_id": 1, "last_read_at": 1})
        items = await cur.to_list(length=None)
        return [{"room_id": it["room_id"], "last_read_at": it.get("last_read_at")} for it in items]

    async def mark_read(self, room_id: str, user_id: str, at: datetime) -> Optional[ParticipantDocument]:
        doc = await self.collection.find_one_and_update(
            {"room_id": room_id, "user_id": user_id},
            {"$set": {"last_read_at": at}},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc
