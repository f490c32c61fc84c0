import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from grubby_chat.config import get_settings
from grubby_chat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from grubby_chat.repositories.message_repository import MessageRepository
from grubby_chat.repositories.participant_repository import ParticipantRepository
from grubby_chat.routers.rooms import router as rooms_router
from grubby_chat.routers.unread import router as unread_router
from grubby_chat.utils.realtime_bus import close_bus, get_bus


logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    db = get_database()
    await ParticipantRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await get_bus()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Grubby chat", lifespan=lifespan)


app.include_router(rooms_router)
app.include_router(unread_router)


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
