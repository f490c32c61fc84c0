from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from grubby_chat.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("room_id", ASCENDING), ("created_at", DESCENDING)])

    async def save_message(self, room_id: str, sender_id: str, content: str) -> MessageDocument:
        doc: MessageDocument = {
            "room_id": room_id,
            "sender_id": sender_id,
            "content": content,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def count_unread(self, room_id: str, user_id: str, since: datetime) -> int:
        """Messages in the room from anyone but ``user_id`` strictly newer than ``since``."""
        return await self.collection.count_documents(
            {
                "room_id": room_id,
                "sender_id": {"$ne": user_id},
                "created_at": {"$gt": since},
            }
        )

    async def list_for_room(
        self,
        room_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        query: Dict[str, Any] = {"room_id": room_id}
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # cursor format: ts_ms:oid
            try:
                ts_str, oid_hex = cursor.split(":", 1)
                ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
                query["$or"] = [
                    {"created_at": {"$lt": ts}},
                    {"created_at": ts, "_id": {"$lt": ObjectId(oid_hex)}},
                ]
            except (ValueError, InvalidId):
                raise ValueError("Invalid cursor")
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_ts = int(last["created_at"].timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        # ascending chronological order for the chat window
        return list(reversed(items)), next_cursor
