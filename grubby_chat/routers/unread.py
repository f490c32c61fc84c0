import json
import logging

import jwt
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from grubby_chat.database.connection import mongo_db_dependency
from grubby_chat.repositories.message_repository import MessageRepository
from grubby_chat.repositories.participant_repository import ParticipantRepository
from grubby_chat.schemas.chat import UnreadSummary
from grubby_chat.services.unread_reconciler import UnreadCountReconciler
from grubby_chat.services.unread_service import UnreadService, badge_label
from grubby_chat.utils.dependencies import get_current_user
from grubby_chat.utils.realtime_bus import bus_dependency
from grubby_chat.utils.security import decode_access_token


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/unread", tags=["unread"])


def get_participant_repository(db=Depends(mongo_db_dependency)) -> ParticipantRepository:
    return ParticipantRepository(db)


def get_unread_service(db=Depends(mongo_db_dependency)) -> UnreadService:
    return UnreadService(ParticipantRepository(db), MessageRepository(db))


@router.get("", response_model=UnreadSummary)
async def get_unread(current_user: dict = Depends(get_current_user), service: UnreadService = Depends(get_unread_service)):
    user_id = current_user["_id"]
    try:
        rooms = await service.count_by_room(user_id)
    except Exception:
        logger.exception("Error fetching unread message count for user %s", user_id)
        rooms = {}
    count = sum(rooms.values())
    return UnreadSummary(user_id=user_id, count=count, badge=badge_label(count), rooms=rooms)


@router.websocket("/ws")
async def unread_socket(
    websocket: WebSocket,
    service: UnreadService = Depends(get_unread_service),
    participant_repo: ParticipantRepository = Depends(get_participant_repository),
    bus=Depends(bus_dependency),
):
    # JWT via query string: ?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user_id = decode_access_token(token).get("sub")
    except jwt.PyJWTError:
        await websocket.close(code=4401)
        return
    if not user_id:
        await websocket.close(code=4401)
        return

    await websocket.accept()

    async def push_count(count: int) -> None:
        await websocket.send_text(json.dumps({"type": "unread_count", "count": count, "badge": badge_label(count)}))

    reconciler = UnreadCountReconciler(user_id, service, participant_repo, bus, on_change=push_count)
    try:
        await reconciler.initialize()
        while True:
            data = await websocket.receive_text()
            # the client may ask for an authoritative recount, e.g. after resuming from background
            if data.strip() == "refresh":
                await reconciler.reconcile()
    except WebSocketDisconnect:
        logger.debug("Unread socket closed for user %s", user_id)
    finally:
        await reconciler.teardown()
