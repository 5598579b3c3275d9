from datetime import tzinfo
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from chatsync.config import get_settings
from chatsync.database.connection import mongo_db_dependency
from chatsync.errors import NotFoundError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.invite_repository import InviteRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import UserPublic
from chatsync.services.conversation_service import ConversationService
from chatsync.services.invite_service import InviteService
from chatsync.services.message_service import MessageService
from chatsync.services.receipt_service import ReceiptService
from chatsync.services.summary_service import SummaryService
from chatsync.services.user_service import UserService
from chatsync.utils.formatting import resolve_timezone


def get_display_timezone() -> tzinfo:
    return resolve_timezone(get_settings().display_timezone)


def get_user_service(db=Depends(mongo_db_dependency)) -> UserService:
    return UserService(UserRepository(db))


def get_conversation_service(db=Depends(mongo_db_dependency)) -> ConversationService:
    return ConversationService(ConversationRepository(db))


def get_message_service(db=Depends(mongo_db_dependency)) -> MessageService:
    return MessageService(MessageRepository(db), ConversationRepository(db))


def get_receipt_service(db=Depends(mongo_db_dependency)) -> ReceiptService:
    return ReceiptService(MessageRepository(db), ConversationRepository(db))


def get_invite_service(db=Depends(mongo_db_dependency)) -> InviteService:
    return InviteService(
        InviteRepository(db),
        UserService(UserRepository(db)),
        ConversationService(ConversationRepository(db)),
    )


def get_summary_service(
    db=Depends(mongo_db_dependency),
    invite_service: InviteService = Depends(get_invite_service),
    tz: tzinfo = Depends(get_display_timezone),
) -> SummaryService:
    return SummaryService(
        invite_service,
        UserService(UserRepository(db)),
        ConversationRepository(db),
        MessageRepository(db),
        tz=tz,
    )


async def resolve_user(user_id: Optional[str], service: UserService) -> UserPublic:
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity")
    try:
        return await service.get_user(user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    service: UserService = Depends(get_user_service),
) -> UserPublic:
    # identity comes from the session layer in front of this service
    return await resolve_user(x_user_id, service)
