from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


MESSAGES_CREATED_CHANNEL = "messages:created"
PARTICIPANTS_UPDATED_CHANNEL = "chat_room_participants:updated"


class MessageCreatedEvent(BaseModel):

    type: Literal["message_created"] = "message_created"
    room_id: str
    sender_id: str
    created_at: datetime
    message_id: Optional[str] = None


class ReadMarkerUpdatedEvent(BaseModel):

    type: Literal["read_marker_updated"] = "read_marker_updated"
    room_id: str
    user_id: str
    last_read_at: Optional[datetime] = None


UnreadEvent = Annotated[
    Union[MessageCreatedEvent, ReadMarkerUpdatedEvent],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(UnreadEvent)


def parse_event(raw: str | bytes) -> Union[MessageCreatedEvent, ReadMarkerUpdatedEvent]:
    """Decode a bus payload into its event variant; raises pydantic.ValidationError."""
    return _event_adapter.validate_json(raw)
