from datetime import datetime, timezone, tzinfo
from typing import Optional

from fastapi import APIRouter, Depends, Query

from chatsync.schemas.chat import ConversationCreate
from chatsync.schemas.user import UserPublic
from chatsync.services.conversation_service import ConversationService
from chatsync.services.message_service import MessageService
from chatsync.services.receipt_service import ReceiptService
from chatsync.services.summary_service import SummaryService
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import (
    get_conversation_service,
    get_current_user,
    get_display_timezone,
    get_message_service,
    get_receipt_service,
    get_summary_service,
    get_user_service,
)
from chatsync.utils.formatting import format_date_header, group_by_day


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("")
async def open_conversation(
    body: ConversationCreate,
    current_user: UserPublic = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
    users: UserService = Depends(get_user_service),
):
    peer = await users.get_user(body.peer_id)
    conversation = await service.find_or_create(current_user.id, peer.id)
    return {"conversation": conversation.model_dump(mode="json")}


@router.get("")
async def list_conversations(
    current_user: UserPublic = Depends(get_current_user),
    service: SummaryService = Depends(get_summary_service),
):
    items = await service.list_conversations(current_user.id)
    return {"items": [item.model_dump(mode="json") for item in items]}


@router.get("/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = None,
    grouped: bool = False,
    current_user: UserPublic = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
    service: MessageService = Depends(get_message_service),
    tz: tzinfo = Depends(get_display_timezone),
):
    await conversations.get_for_participant(conversation_id, current_user.id)
    messages, next_cursor = await service.history_page(conversation_id, limit=limit, cursor=cursor)
    if not grouped:
        return {"items": [m.model_dump(mode="json") for m in messages], "next_cursor": next_cursor}

    today = datetime.now(timezone.utc).astimezone(tz).date()
    groups = [
        {
            "date": group.date.isoformat(),
            "header": format_date_header(group.date, today),
            "messages": [m.model_dump(mode="json") for m in group.messages],
        }
        for group in group_by_day(messages, tz)
    ]
    return {"groups": groups, "next_cursor": next_cursor}


@router.get("/{conversation_id}/unread")
async def unread_count(
    conversation_id: str,
    current_user: UserPublic = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
    service: ReceiptService = Depends(get_receipt_service),
):
    await conversations.get_for_participant(conversation_id, current_user.id)
    count = await service.unread_count(conversation_id, current_user.id)
    return {"conversation_id": conversation_id, "unread": count}
