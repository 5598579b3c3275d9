from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from chatsync.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chatsync.errors import NotFoundError, TransientStoreError, ValidationError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.invite_repository import InviteRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.routers.chat import router as chat_router
from chatsync.routers.conversations import router as conversations_router
from chatsync.routers.invites import router as invites_router
from chatsync.routers.users import router as users_router
from chatsync.utils.logger import logger
from chatsync.utils.realtime_bus import close_bus


async def ensure_indexes() -> None:
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await InviteRepository(db).ensure_indexes()


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    await ensure_indexes()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="chatsync", lifespan=lifespan)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(TransientStoreError)
async def transient_store_handler(request: Request, exc: TransientStoreError):
    logger.error("%s %s failed on the store: %s", request.method, request.url.path, exc)
    content = {"detail": "Storage temporarily unavailable, please retry"}
    if exc.draft is not None:
        content["draft"] = exc.draft
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=content)


app.include_router(conversations_router)
app.include_router(chat_router)
app.include_router(invites_router)
app.include_router(users_router)


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
