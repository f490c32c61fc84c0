import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from grubby_chat.repositories.message_repository import MessageRepository
from grubby_chat.repositories.participant_repository import ParticipantRepository
from grubby_chat.schemas.events import (
    MESSAGES_CREATED_CHANNEL,
    PARTICIPANTS_UPDATED_CHANNEL,
    MessageCreatedEvent,
    ReadMarkerUpdatedEvent,
)


logger = logging.getLogger(__name__)


class NotParticipantError(ValueError):
    pass


class ChatService:

    def __init__(self, message_repo: MessageRepository, participant_repo: ParticipantRepository, bus: Any) -> None:
        self._message_repo = message_repo
        self._participant_repo = participant_repo
        self._bus = bus

    async def create_room(self, creator_id: str, member_ids: List[str]) -> Dict[str, Any]:
        members = [m for m in dict.fromkeys(member_ids) if m and m != creator_id]
        if not members:
            raise ValueError("A room needs at least one other member")
        room_id = str(ObjectId())
        participants = [creator_id] + members
        for user_id in participants:
            await self._participant_repo.add(room_id, user_id)
        logger.info("Room %s created by %s with %d participants", room_id, creator_id, len(participants))
        return {"room_id": room_id, "participants": participants}

    async def send_message(self, room_id: str, sender_id: str, content: str) -> Dict[str, Any]:
        if not content or not content.strip():
            raise ValueError("Message content cannot be empty")
        await self._require_participant(room_id, sender_id)
        saved = await self._message_repo.save_message(room_id, sender_id, content.strip())
        event = MessageCreatedEvent(
            room_id=room_id,
            sender_id=sender_id,
            created_at=saved["created_at"],
            message_id=saved["_id"],
        )
        await self._publish(MESSAGES_CREATED_CHANNEL, event.model_dump_json())
        return saved

    async def open_room(self, room_id: str, user_id: str) -> Dict[str, Any]:
        """Advance the user's read marker to now and announce it on the bus."""
        participant = await self._participant_repo.mark_read(room_id, user_id, datetime.now(timezone.utc))
        if participant is None:
            raise NotParticipantError("Not a participant of this room")
        event = ReadMarkerUpdatedEvent(
            room_id=room_id,
            user_id=user_id,
            last_read_at=participant.get("last_read_at"),
        )
        await self._publish(PARTICIPANTS_UPDATED_CHANNEL, event.model_dump_json())
        return participant

    async def list_messages(
        self, room_id: str, user_id: str, limit: int = 50, cursor: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        await self._require_participant(room_id, user_id)
        return await self._message_repo.list_for_room(room_id, limit=limit, cursor=cursor)

    async def _require_participant(self, room_id: str, user_id: str) -> Dict[str, Any]:
        participant = await self._participant_repo.get(room_id, user_id)
        if participant is None:
            raise NotParticipantError("Not a participant of this room")
        return participant

    async def _publish(self, channel: str, payload: str) -> None:
        # the write already succeeded; live listeners catch up on their next reconciliation
        try:
            await self._bus.publish(channel, payload)
        except Exception:
            logger.exception("Failed to publish to %s", channel)
