from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from grubby_chat.database.connection import mongo_db_dependency
from grubby_chat.repositories.message_repository import MessageRepository
from grubby_chat.repositories.participant_repository import ParticipantRepository
from grubby_chat.schemas.chat import MessageCreate, MessagePublic, ParticipantPublic, RoomCreate, RoomPublic
from grubby_chat.services.chat_service import ChatService, NotParticipantError
from grubby_chat.utils.dependencies import get_current_user
from grubby_chat.utils.realtime_bus import bus_dependency


router = APIRouter(prefix="/rooms", tags=["chat"])


def get_chat_service(db=Depends(mongo_db_dependency), bus=Depends(bus_dependency)) -> ChatService:
    return ChatService(MessageRepository(db), ParticipantRepository(db), bus)


def _message_public(doc: Dict[str, Any]) -> MessagePublic:
    return MessagePublic(
        id=str(doc["_id"]),
        room_id=doc["room_id"],
        sender_id=doc["sender_id"],
        content=doc["content"],
        created_at=doc["created_at"],
    )


@router.post("", response_model=RoomPublic, status_code=status.HTTP_201_CREATED)
async def create_room(body: RoomCreate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        room = await service.create_room(current_user["_id"], body.member_ids)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return RoomPublic(**room)


@router.post("/{room_id}/messages", response_model=MessagePublic, status_code=status.HTTP_201_CREATED)
async def send_message(room_id: str, body: MessageCreate, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        saved = await service.send_message(room_id, current_user["_id"], body.content)
    except NotParticipantError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _message_public(saved)


@router.get("/{room_id}/messages")
async def list_messages(room_id: str, limit: int = Query(50, ge=1, le=200), cursor: Optional[str] = None, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        items, next_cursor = await service.list_messages(room_id, current_user["_id"], limit=limit, cursor=cursor)
    except NotParticipantError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"items": [_message_public(m) for m in items], "next_cursor": next_cursor}


@router.post("/{room_id}/read", response_model=ParticipantPublic)
async def open_room(room_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        participant = await service.open_room(room_id, current_user["_id"])
    except NotParticipantError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return ParticipantPublic(
        room_id=participant["room_id"],
        user_id=participant["user_id"],
        last_read_at=participant.get("last_read_at"),
    )
