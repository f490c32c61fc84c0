from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    room_id: str
    sender_id: str
    content: str
    created_at: datetime
