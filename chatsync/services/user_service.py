from typing import List

from chatsync.errors import NotFoundError
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import UserPublic


class UserService:
    """Read-only access to the external user directory"""

    def __init__(self, user_repository: UserRepository):
        self.user_repository = user_repository

    async def get_user(self, user_id: str) -> UserPublic:
        user = await self.user_repository.get_user_by_id(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return UserPublic.from_document(user)

    async def exists(self, user_id: str) -> bool:
        return await self.user_repository.get_user_by_id(user_id) is not None

    async def find_users(self, query: str) -> List[UserPublic]:
        """
        Search the directory
        - exact match when the query looks like an email
        - otherwise name prefix (case-insensitive) and mobile prefix, de-duplicated
        """
        query = (query or "").strip()
        if not query:
            return []

        if "@" in query:
            user = await self.user_repository.get_user_by_email(query)
            return [UserPublic.from_document(user)] if user else []

        results: List[UserPublic] = []
        seen = set()
        for doc in await self.user_repository.find_users_by_name(query) + await self.user_repository.find_users_by_mobile(query):
            if doc["_id"] in seen:
                continue
            seen.add(doc["_id"])
            results.append(UserPublic.from_document(doc))
        return results
