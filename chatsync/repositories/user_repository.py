import re
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from chatsync.models.user import UserDocument
from chatsync.utils.store import normalize_id, store_call, to_object_id


SEARCH_LIMIT = 50


class UserRepository:
    """Read-only view of the user directory."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    @store_call("users.get")
    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return normalize_id(await self._collection.find_one({"_id": oid}))

    @store_call("users.get_by_email")
    async def get_user_by_email(self, email: str) -> Optional[UserDocument]:
        return normalize_id(await self._collection.find_one({"email": email}))

    @store_call("users.find_by_name")
    async def find_users_by_name(self, prefix: str) -> List[UserDocument]:
        cursor = self._collection.find(
            {"name": {"$regex": f"^{re.escape(prefix)}", "$options": "i"}}
        ).sort("name", ASCENDING).limit(SEARCH_LIMIT)
        return [normalize_id(doc) async for doc in cursor]

    @store_call("users.find_by_mobile")
    async def find_users_by_mobile(self, prefix: str) -> List[UserDocument]:
        cursor = self._collection.find(
            {"mobile": {"$regex": f"^{re.escape(prefix)}"}}
        ).sort("mobile", ASCENDING).limit(SEARCH_LIMIT)
        return [normalize_id(doc) async for doc in cursor]
