from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from chatsync.models.invite import InviteDocument
from chatsync.utils.store import normalize_id, store_call, to_object_id


class InviteRepository:
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("invites")

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("to_user", ASCENDING), ("status", ASCENDING)])
        await self._collection.create_index([("from_user", ASCENDING), ("status", ASCENDING)])

    @store_call("invites.create")
    async def create_invite(self, from_user: str, to_user: str) -> InviteDocument:
        doc: Dict[str, Any] = {
            "from_user": from_user,
            "to_user": to_user,
            "status": "pending",
            "timestamp": datetime.now(timezone.utc),
        }
        result = await self._collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    @store_call("invites.get")
    async def get_invite(self, invite_id: str) -> Optional[InviteDocument]:
        oid = to_object_id(invite_id)
        if oid is None:
            return None
        return normalize_id(await self._collection.find_one({"_id": oid}))

    @store_call("invites.find_open_between")
    async def find_open_between(self, user_a: str, user_b: str) -> Optional[InviteDocument]:
        doc = await self._collection.find_one({
            "status": {"$in": ["pending", "accepted"]},
            "$or": [
                {"from_user": user_a, "to_user": user_b},
                {"from_user": user_b, "to_user": user_a},
            ],
        })
        return normalize_id(doc)

    @store_call("invites.transition")
    async def transition(self, invite_id: str, status: str) -> Optional[InviteDocument]:
        """Move a pending invite to ``status``; None if it was no longer pending."""
        oid = to_object_id(invite_id)
        if oid is None:
            return None
        doc = await self._collection.find_one_and_update(
            {"_id": oid, "status": "pending"},
            {"$set": {"status": status, "responded_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        return normalize_id(doc)

    @store_call("invites.list_accepted")
    async def list_accepted_for(self, user_id: str) -> List[InviteDocument]:
        cursor = self._collection.find({
            "status": "accepted",
            "$or": [{"from_user": user_id}, {"to_user": user_id}],
        }).sort([("timestamp", ASCENDING), ("_id", ASCENDING)])
        return [normalize_id(doc) async for doc in cursor]

    @store_call("invites.list_pending")
    async def list_pending_for(self, user_id: str) -> List[InviteDocument]:
        cursor = self._collection.find({"to_user": user_id, "status": "pending"}).sort(
            [("timestamp", ASCENDING), ("_id", ASCENDING)]
        )
        return [normalize_id(doc) async for doc in cursor]

    @store_call("invites.count_pending")
    async def count_pending_for(self, user_id: str) -> int:
        return await self._collection.count_documents({"to_user": user_id, "status": "pending"})
