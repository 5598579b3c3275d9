from typing import Optional

from chatsync.errors import NotFoundError, ValidationError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.schemas.chat import Conversation
from chatsync.utils.logger import logger


def to_conversation(doc: dict) -> Conversation:
    return Conversation(
        id=str(doc["_id"]),
        participants=list(doc.get("participants", [])),
        created_at=doc.get("created_at"),
        last_message=doc.get("last_message"),
        last_message_time=doc.get("last_message_time"),
        last_message_sender_id=doc.get("last_message_sender_id"),
    )


class ConversationService:
    """Finds or lazily creates the single conversation between two users."""

    def __init__(self, conversation_repo: ConversationRepository) -> None:
        self._conversation_repo = conversation_repo

    async def find_or_create(self, user_a: str, user_b: str) -> Conversation:
        if not user_a or not user_b:
            raise ValidationError("Both participants are required")
        if user_a == user_b:
            raise ValidationError("A conversation needs two distinct users")

        existing = await self._conversation_repo.find_between(user_a, user_b)
        if existing:
            return to_conversation(existing)

        created = await self._conversation_repo.create(user_a, user_b)
        logger.info("conversation %s created for %s and %s", created["_id"], user_a, user_b)
        return to_conversation(created)

    async def find_between(self, user_a: str, user_b: str) -> Optional[Conversation]:
        existing = await self._conversation_repo.find_between(user_a, user_b)
        return to_conversation(existing) if existing else None

    async def get(self, conversation_id: str) -> Conversation:
        doc = await self._conversation_repo.get(conversation_id)
        if not doc:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return to_conversation(doc)

    async def get_for_participant(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self.get(conversation_id)
        # outsiders get the same answer as a missing id
        if user_id not in conversation.participants:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation
