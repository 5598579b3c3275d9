import asyncio
import json
from contextlib import suppress
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PayloadError

from chatsync.config import get_settings
from chatsync.errors import NotFoundError, TransientStoreError, ValidationError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.chat import Message, VoiceNote
from chatsync.services.conversation_service import ConversationService
from chatsync.utils.followup import run_followup
from chatsync.utils.formatting import message_preview
from chatsync.utils.logger import logger
from chatsync.utils.realtime_bus import conversation_channel, get_bus


def to_message(doc: Dict[str, Any]) -> Message:
    return Message(
        id=str(doc["_id"]),
        conversation_id=str(doc["conversation_id"]),
        sender_id=doc["sender_id"],
        text=doc.get("text"),
        voice_note=doc.get("voice_note"),
        timestamp=doc["timestamp"],
        seen_by=dict(doc.get("seen_by") or {}),
        reply_to=doc.get("reply_to"),
    )


def reply_snapshot(original: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of the replied-to message as it is right now; never refreshed later."""
    snapshot: Dict[str, Any] = {"id": str(original["_id"]), "sender_id": original["sender_id"]}
    if original.get("text"):
        snapshot["text"] = original["text"]
    if original.get("voice_note"):
        snapshot["voice_note"] = dict(original["voice_note"])
    return snapshot


def message_event(message: Message) -> str:
    return json.dumps({"type": "message", "message": message.model_dump(mode="json")})


def seen_event(reader_id: str, seen_at: str, message_ids: List[str]) -> str:
    return json.dumps({"type": "seen", "reader_id": reader_id, "seen_at": seen_at, "message_ids": message_ids})


_INITIAL = object()
_CLOSED = object()


class MessageSubscription:
    """Live view of one conversation.

    Iterate it to receive the whole history, sorted, after every change. Call
    ``close()`` (or leave the ``async with`` block) to stop delivery.
    """

    def __init__(self, conversation_id: str, message_repo: MessageRepository, bus) -> None:
        self.conversation_id = conversation_id
        self._message_repo = message_repo
        self._bus = bus
        self._messages: Dict[str, Message] = {}
        self._events: asyncio.Queue = asyncio.Queue()
        self._sub = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> "MessageSubscription":
        # listen before loading history so nothing appended in between is missed
        self._sub = await self._bus.subscribe(conversation_channel(self.conversation_id), self._on_event)
        self._task = asyncio.create_task(self._sub.run())
        try:
            docs = await self._message_repo.list_all(self.conversation_id)
        except BaseException:
            await self.close()
            raise
        for doc in docs:
            self._merge(to_message(doc))
        self._events.put_nowait(_INITIAL)
        return self

    def snapshot(self) -> List[Message]:
        # handed-out snapshots stay frozen
        return [m.model_copy(deep=True) for m in sorted(self._messages.values(), key=Message.sort_key)]

    async def _on_event(self, raw: str) -> None:
        if self._closed:
            return
        try:
            event = json.loads(raw)
            parsed = self._parse(event)
        except (ValueError, KeyError, TypeError, PayloadError) as exc:
            logger.warning("skipping malformed event on conversation %s: %s", self.conversation_id, exc)
            return
        self._events.put_nowait(parsed)

    @staticmethod
    def _parse(event: Dict[str, Any]) -> Tuple[str, Any]:
        kind = event["type"]
        if kind == "message":
            return "message", Message.model_validate(event["message"])
        if kind == "seen":
            return "seen", (str(event["reader_id"]), str(event["seen_at"]), [str(i) for i in event["message_ids"]])
        raise ValueError(f"unknown event type {kind!r}")

    def _merge(self, message: Message) -> bool:
        current = self._messages.get(message.id)
        if current is None:
            self._messages[message.id] = message
            return True
        changed = False
        for reader_id, seen_at in message.seen_by.items():
            if reader_id not in current.seen_by:
                current.seen_by[reader_id] = seen_at
                changed = True
        return changed

    def _apply(self, event: Union[Tuple[str, Any], object]) -> bool:
        if event is _INITIAL:
            return True
        kind, payload = event
        if kind == "message":
            if payload.conversation_id != self.conversation_id:
                return False
            return self._merge(payload)
        reader_id, seen_at, message_ids = payload
        changed = False
        for message_id in message_ids:
            message = self._messages.get(message_id)
            if message is None or message.sender_id == reader_id or reader_id in message.seen_by:
                continue
            message.seen_by[reader_id] = seen_at
            changed = True
        return changed

    def __aiter__(self) -> "MessageSubscription":
        return self

    async def __anext__(self) -> List[Message]:
        while not self._closed:
            event = await self._events.get()
            if event is _CLOSED:
                break
            changed = self._apply(event)
            # coalesce whatever else is already queued into the same snapshot
            while not self._events.empty():
                queued = self._events.get_nowait()
                if queued is _CLOSED:
                    self._events.put_nowait(_CLOSED)
                    break
                changed = self._apply(queued) or changed
            if changed and not self._closed:
                return self.snapshot()
        raise StopAsyncIteration

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # stop the reader before its connection is torn down
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        if self._sub is not None:
            await self._sub.cancel()
        self._events.put_nowait(_CLOSED)

    async def __aenter__(self) -> "MessageSubscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class MessageService:

    def __init__(self, message_repo: MessageRepository, conversation_repo: ConversationRepository, bus=None) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._conversations = ConversationService(conversation_repo)
        self._bus = bus

    async def _get_bus(self):
        if self._bus is None:
            self._bus = await get_bus()
        return self._bus

    @staticmethod
    def _validate_payload(
        text: Optional[str], voice_note: Union[VoiceNote, Dict[str, Any], None]
    ) -> Tuple[Optional[str], Optional[VoiceNote]]:
        text = (text or "").strip() or None
        if voice_note is not None and not isinstance(voice_note, VoiceNote):
            try:
                voice_note = VoiceNote.model_validate(voice_note)
            except PayloadError as exc:
                raise ValidationError(f"Malformed voice note: {exc}") from exc
        if text and voice_note is not None:
            raise ValidationError("A message carries either text or a voice note, not both")
        if not text and voice_note is None:
            raise ValidationError("Message content cannot be empty")
        if voice_note is not None:
            minimum = get_settings().min_voice_note_seconds
            if voice_note.duration_seconds < minimum:
                raise ValidationError(f"Voice notes must be at least {minimum:g} second(s) long")
        return text, voice_note

    async def append(
        self,
        conversation_id: str,
        sender_id: str,
        text: Optional[str] = None,
        voice_note: Union[VoiceNote, Dict[str, Any], None] = None,
        reply_to_id: Optional[str] = None,
    ) -> Message:
        text, voice_note = self._validate_payload(text, voice_note)
        try:
            conversation = await self._conversations.get(conversation_id)
            if sender_id not in conversation.participants:
                raise ValidationError("Sender is not a participant of this conversation")

            reply_to = None
            if reply_to_id is not None:
                original = await self._message_repo.get_message(conversation_id, reply_to_id)
                if not original:
                    raise ValidationError(f"Reply target {reply_to_id} is not a message of this conversation")
                reply_to = reply_snapshot(original)

            saved = await self._message_repo.insert_message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                text=text,
                voice_note=voice_note.model_dump() if voice_note else None,
                reply_to=reply_to,
            )
        except TransientStoreError as exc:
            # hand the drafted text back so the input box can be restored
            raise exc.with_draft(text) from exc

        message = to_message(saved)
        await run_followup(
            f"summary update for conversation {conversation_id}",
            lambda: self._update_summary(message),
        )
        await self._publish(conversation_id, message_event(message))
        return message

    async def send_text(self, conversation_id: str, sender_id: str, text: str, reply_to_id: Optional[str] = None) -> Message:
        return await self.append(conversation_id, sender_id, text=text, reply_to_id=reply_to_id)

    async def send_voice_note(
        self, conversation_id: str, sender_id: str, url: str, duration_seconds: float, reply_to_id: Optional[str] = None
    ) -> Message:
        voice_note = {"url": url, "duration_seconds": duration_seconds}
        return await self.append(conversation_id, sender_id, voice_note=voice_note, reply_to_id=reply_to_id)

    async def _update_summary(self, message: Message) -> None:
        updated = await self._conversation_repo.update_last_message(
            message.conversation_id, message_preview(message), message.timestamp, message.sender_id
        )
        if not updated:
            logger.warning("conversation %s vanished before its summary update", message.conversation_id)

    async def _publish(self, conversation_id: str, payload: str) -> None:
        bus = await self._get_bus()
        try:
            await bus.publish(conversation_channel(conversation_id), payload)
        except Exception:
            # the write is durable; live subscribers catch up on their next snapshot
            logger.exception("publishing to conversation %s failed", conversation_id)

    async def history(self, conversation_id: str) -> List[Message]:
        await self._conversations.get(conversation_id)
        docs = await self._message_repo.list_all(conversation_id)
        return [to_message(doc) for doc in docs]

    async def history_page(self, conversation_id: str, limit: int = 50, cursor: Optional[str] = None):
        await self._conversations.get(conversation_id)
        docs, next_cursor = await self._message_repo.get_page(conversation_id, limit=limit, cursor=cursor)
        return [to_message(doc) for doc in docs], next_cursor

    async def get_message(self, conversation_id: str, message_id: str) -> Message:
        doc = await self._message_repo.get_message(conversation_id, message_id)
        if not doc:
            raise NotFoundError(f"Message {message_id} not found")
        return to_message(doc)

    async def subscribe(self, conversation_id: str) -> MessageSubscription:
        await self._conversations.get(conversation_id)
        subscription = MessageSubscription(conversation_id, self._message_repo, await self._get_bus())
        return await subscription.start()
