from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class RoomCreate(BaseModel):

    member_ids: List[str] = Field(min_length=1)


class RoomPublic(BaseModel):

    room_id: str
    participants: List[str]


class MessageCreate(BaseModel):

    content: str = Field(min_length=1, max_length=4000)


class MessagePublic(BaseModel):

    id: str
    room_id: str
    sender_id: str
    content: str
    created_at: datetime


class ParticipantPublic(BaseModel):

    room_id: str
    user_id: str
    last_read_at: Optional[datetime] = None


class UnreadSummary(BaseModel):

    user_id: str
    count: int
    badge: Optional[str] = None
    rooms: Dict[str, int] = Field(default_factory=dict)
