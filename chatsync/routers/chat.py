import asyncio
import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError

from chatsync.errors import ChatError, NotFoundError
from chatsync.schemas.chat import MessageCreate, SeenRequest
from chatsync.schemas.user import UserPublic
from chatsync.services.conversation_service import ConversationService
from chatsync.services.message_service import MessageService
from chatsync.services.receipt_service import ReceiptService, delivery_status
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import (
    get_conversation_service,
    get_current_user,
    get_message_service,
    get_receipt_service,
    get_user_service,
)
from chatsync.utils.logger import logger


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.post("/{conversation_id}/messages")
async def send_message(
    conversation_id: str,
    body: MessageCreate,
    current_user: UserPublic = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
    service: MessageService = Depends(get_message_service),
):
    await conversations.get_for_participant(conversation_id, current_user.id)
    message = await service.append(
        conversation_id,
        current_user.id,
        text=body.text,
        voice_note=body.voice_note,
        reply_to_id=body.reply_to_id,
    )
    return {"message": message.model_dump(mode="json")}


@router.post("/{conversation_id}/seen")
async def mark_seen(
    conversation_id: str,
    body: SeenRequest,
    current_user: UserPublic = Depends(get_current_user),
    service: ReceiptService = Depends(get_receipt_service),
):
    updated = await service.mark_seen(conversation_id, current_user.id, body.message_ids)
    return {"updated": updated}


@router.get("/{conversation_id}/messages/{message_id}/status")
async def message_status(
    conversation_id: str,
    message_id: str,
    current_user: UserPublic = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
    service: MessageService = Depends(get_message_service),
):
    conversation = await conversations.get_for_participant(conversation_id, current_user.id)
    message = await service.get_message(conversation_id, message_id)
    peer_id = conversation.peer_of(current_user.id)
    return {"message_id": message.id, "status": delivery_status(message, peer_id).value}


@router.websocket("/{conversation_id}/stream")
async def conversation_stream(
    websocket: WebSocket,
    conversation_id: str,
    users: UserService = Depends(get_user_service),
    conversations: ConversationService = Depends(get_conversation_service),
    messages: MessageService = Depends(get_message_service),
    receipts: ReceiptService = Depends(get_receipt_service),
):
    user_id = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return
    try:
        user = await users.get_user(user_id)
        await conversations.get_for_participant(conversation_id, user.id)
    except NotFoundError:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    try:
        subscription = await messages.subscribe(conversation_id)
    except ChatError as exc:
        logger.error("stream for conversation %s could not start: %s", conversation_id, exc)
        await websocket.close(code=1011)
        return

    async def _pump_snapshots():
        async for snapshot in subscription:
            await websocket.send_text(json.dumps({
                "type": "snapshot",
                "messages": [m.model_dump(mode="json") for m in snapshot],
            }))

    pump_task = asyncio.create_task(_pump_snapshots())
    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except ValueError:
                await websocket.send_text(json.dumps({"type": "error", "detail": "Invalid JSON"}))
                continue
            # Expect msg = {"type": "seen", "message_ids"?: [str]} when messages scroll into view
            if isinstance(msg, dict) and msg.get("type") == "seen":
                try:
                    request = SeenRequest.model_validate(msg)
                except PayloadError as exc:
                    await websocket.send_text(json.dumps({"type": "error", "detail": str(exc)}))
                    continue
                try:
                    await receipts.mark_seen(conversation_id, user.id, request.message_ids)
                except ChatError as exc:
                    await websocket.send_text(json.dumps({"type": "error", "detail": str(exc)}))
                continue
            await websocket.send_text(json.dumps({"type": "error", "detail": "Unsupported event"}))
    except WebSocketDisconnect:
        logger.info("stream for conversation %s closed by %s", conversation_id, user.id)
    finally:
        await subscription.close()
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
