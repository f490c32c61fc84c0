from datetime import datetime
from typing import Optional, TypedDict


class ParticipantDocument(TypedDict, total=False):
    _id: str
    room_id: str
    user_id: str
    # None until the user opens the room for the first time
    last_read_at: Optional[datetime]
    joined_at: datetime
