import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from grubby_chat.repositories.message_repository import MessageRepository
from grubby_chat.repositories.participant_repository import ParticipantRepository


logger = logging.getLogger(__name__)

# a null last_read_at means nothing in the room has been read yet
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def badge_label(count: int) -> Optional[str]:
    """Sidebar badge text: nothing for zero, the number up to nine, then "9+"."""
    if count <= 0:
        return None
    if count > 9:
        return "9+"
    return str(count)


class UnreadService:
    """Full reconciliation of a user's unread messages against their read markers."""

    def __init__(self, participant_repo: ParticipantRepository, message_repo: MessageRepository) -> None:
        self._participant_repo = participant_repo
        self._message_repo = message_repo

    async def count_by_room(self, user_id: str) -> Dict[str, int]:
        """
        Unread count per room the user participates in.

        A failing room counts as 0 and the rest are still counted. A failure to
        list the user's rooms propagates.
        """
        rooms = await self._participant_repo.list_for_user(user_id)
        counts: Dict[str, int] = {}
        for room in rooms:
            room_id = room["room_id"]
            since = room.get("last_read_at") or EPOCH
            try:
                counts[room_id] = await self._message_repo.count_unread(room_id, user_id, since)
            except Exception:
                logger.exception("Error counting unread messages for room %s", room_id)
                counts[room_id] = 0
        return counts

    async def total_unread(self, user_id: str) -> int:
        try:
            counts = await self.count_by_room(user_id)
        except Exception:
            logger.exception("Error fetching unread message count for user %s", user_id)
            return 0
        return sum(counts.values())
