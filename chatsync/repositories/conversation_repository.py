from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from chatsync.models.conversation import ConversationDocument
from chatsync.utils.store import normalize_id, store_call, to_object_id


def pair_key(user_a: str, user_b: str) -> str:
    return ":".join(sorted([user_a, user_b]))


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True, sparse=True)
        await self.collection.create_index([("last_message_time", DESCENDING)])

    @store_call("conversations.get")
    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        oid = to_object_id(conversation_id)
        if oid is None:
            return None
        return normalize_id(await self.collection.find_one({"_id": oid}))

    @store_call("conversations.find_between")
    async def find_between(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        # oldest first, so pre-existing duplicates resolve the same way every time
        cursor = self.collection.find({"participants": user_a}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        async for doc in cursor:
            if user_b in doc.get("participants", []):
                return normalize_id(doc)
        return None

    @store_call("conversations.create")
    async def create(self, user_a: str, user_b: str) -> ConversationDocument:
        key = pair_key(user_a, user_b)
        doc: Dict[str, Any] = {
            "participants": [user_a, user_b],
            "pair_key": key,
            "last_message": None,
            "last_message_time": None,
            "last_message_sender_id": None,
        }
        try:
            created = await self.collection.find_one_and_update(
                {"pair_key": key},
                {"$setOnInsert": doc, "$currentDate": {"created_at": True}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # lost a concurrent upsert race; the winner's document is there now
            created = await self.collection.find_one({"pair_key": key})
        return normalize_id(created)

    @store_call("conversations.update_last_message")
    async def update_last_message(
        self, conversation_id: str, preview: str, sent_at: datetime, sender_id: str
    ) -> bool:
        oid = to_object_id(conversation_id)
        if oid is None:
            return False
        result = await self.collection.update_one(
            {"_id": oid},
            {
                "$set": {
                    "last_message": preview,
                    "last_message_time": sent_at,
                    "last_message_sender_id": sender_id,
                },
            },
        )
        return result.matched_count > 0

    @store_call("conversations.list_for_user")
    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        cursor = self.collection.find({"participants": user_id}).sort(
            [("created_at", ASCENDING), ("_id", ASCENDING)]
        )
        items = await cursor.to_list(length=None)
        for it in items:
            normalize_id(it)
        return items
