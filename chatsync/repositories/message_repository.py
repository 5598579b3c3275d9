from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from chatsync.errors import ValidationError
from chatsync.models.message import MessageDocument, ReplySnapshotDocument, VoiceNoteDocument
from chatsync.utils.store import normalize_id, store_call, to_object_id


def _object_ids(message_ids: Iterable[str]) -> List[ObjectId]:
    return [oid for oid in (to_object_id(mid) for mid in message_ids) if oid is not None]


def _unseen_filter(conversation_id: str, reader_id: str) -> Dict[str, Any]:
    return {
        "conversation_id": conversation_id,
        "sender_id": {"$ne": reader_id},
        f"seen_by.{reader_id}": {"$exists": False},
    }


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("conversation_id", ASCENDING), ("timestamp", ASCENDING), ("_id", ASCENDING)]
        )

    @store_call("messages.insert")
    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: Optional[str] = None,
        voice_note: Optional[VoiceNoteDocument] = None,
        reply_to: Optional[ReplySnapshotDocument] = None,
    ) -> MessageDocument:
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "seen_by": {},
        }
        if text is not None:
            doc["text"] = text
        if voice_note is not None:
            doc["voice_note"] = voice_note
        if reply_to is not None:
            doc["reply_to"] = reply_to
        # upsert on a fresh id so the server clock stamps the message
        saved = await self.collection.find_one_and_update(
            {"_id": ObjectId()},
            {"$setOnInsert": doc, "$currentDate": {"timestamp": True}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return normalize_id(saved)

    @store_call("messages.get")
    async def get_message(self, conversation_id: str, message_id: str) -> Optional[MessageDocument]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid, "conversation_id": conversation_id})
        return normalize_id(doc)

    @store_call("messages.list")
    async def list_all(self, conversation_id: str) -> List[MessageDocument]:
        cur = self.collection.find({"conversation_id": conversation_id}).sort(
            [("timestamp", ASCENDING), ("_id", ASCENDING)]
        )
        items = await cur.to_list(length=None)
        for it in items:
            normalize_id(it)
        return items

    @store_call("messages.page")
    async def get_page(
        self,
        conversation_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        query: Dict[str, Any] = {"conversation_id": conversation_id}
        sort = [("timestamp", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # cursor format: ts_ms:oid
            ts, oid = parse_cursor(cursor)
            query["$or"] = [
                {"timestamp": {"$lt": ts}},
                {"timestamp": ts, "_id": {"$lt": oid}},
            ]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            normalize_id(it)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = make_cursor(last["timestamp"], last["_id"])
        # ascending chronological order for the UI
        return list(reversed(items)), next_cursor

    @store_call("messages.latest")
    async def get_latest(self, conversation_id: str) -> Optional[MessageDocument]:
        doc = await self.collection.find_one(
            {"conversation_id": conversation_id},
            sort=[("timestamp", DESCENDING), ("_id", DESCENDING)],
        )
        return normalize_id(doc)

    @store_call("messages.count_unread")
    async def count_unread(self, conversation_id: str, reader_id: str) -> int:
        return await self.collection.count_documents(_unseen_filter(conversation_id, reader_id))

    @store_call("messages.existing_ids")
    async def existing_ids(self, conversation_id: str, message_ids: Iterable[str]) -> Set[str]:
        cur = self.collection.find(
            {"conversation_id": conversation_id, "_id": {"$in": _object_ids(message_ids)}},
            projection={"_id": 1},
        )
        return {str(doc["_id"]) async for doc in cur}

    @store_call("messages.unseen_ids")
    async def unseen_ids(
        self, conversation_id: str, reader_id: str, message_ids: Optional[Iterable[str]] = None
    ) -> List[str]:
        query = _unseen_filter(conversation_id, reader_id)
        if message_ids is not None:
            query["_id"] = {"$in": _object_ids(message_ids)}
        cur = self.collection.find(query, projection={"_id": 1}).sort(
            [("timestamp", ASCENDING), ("_id", ASCENDING)]
        )
        return [str(doc["_id"]) async for doc in cur]

    @store_call("messages.mark_seen")
    async def mark_seen(self, conversation_id: str, reader_id: str, message_ids: Iterable[str], seen_at: str) -> int:
        query = _unseen_filter(conversation_id, reader_id)
        query["_id"] = {"$in": _object_ids(message_ids)}
        # field-level merge: only this reader's key is written
        result = await self.collection.update_many(query, {"$set": {f"seen_by.{reader_id}": seen_at}})
        return result.modified_count or 0


def make_cursor(ts: datetime, message_id: str) -> str:
    return f"{int(ts.timestamp() * 1000)}:{message_id}"


def parse_cursor(cursor: str) -> Tuple[datetime, Optional[ObjectId]]:
    try:
        ts_str, oid_hex = cursor.split(":", 1)
        ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
    except ValueError as exc:
        raise ValidationError(f"Malformed cursor: {cursor!r}") from exc
    oid = to_object_id(oid_hex)
    if oid is None:
        raise ValidationError(f"Malformed cursor: {cursor!r}")
    return ts, oid
