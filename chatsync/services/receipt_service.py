from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from chatsync.errors import NotFoundError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.chat import DeliveryStatus, Message
from chatsync.services.conversation_service import ConversationService
from chatsync.services.message_service import seen_event
from chatsync.utils.logger import logger
from chatsync.utils.realtime_bus import conversation_channel, get_bus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_unread(message: Message, reader_id: str) -> bool:
    return message.sender_id != reader_id and reader_id not in message.seen_by


def first_unread_index(messages: Sequence[Message], reader_id: str) -> Optional[int]:
    """Position of the first message ``reader_id`` has not seen, for the unread divider."""
    for index, message in enumerate(messages):
        if is_unread(message, reader_id):
            return index
    return None


def delivery_status(message: Message, peer_id: str) -> DeliveryStatus:
    """Status of one of the sender's own messages as seen from the sender."""
    if peer_id in message.seen_by:
        return DeliveryStatus.SEEN
    if message.seen_by:
        return DeliveryStatus.DELIVERED
    return DeliveryStatus.SENT


class ReceiptService:
    """Passive read-receipt tracker; callers decide when a message counts as seen."""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        bus=None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._message_repo = message_repo
        self._conversations = ConversationService(conversation_repo)
        self._bus = bus
        self._clock = clock

    async def mark_seen(
        self, conversation_id: str, reader_id: str, message_ids: Optional[Iterable[str]] = None
    ) -> List[str]:
        """Record that ``reader_id`` saw the given messages (all unread ones if None).

        Messages sent by the reader and messages already seen by them are left
        alone, so repeating a call changes nothing. Returns the ids that were
        newly marked.
        """
        await self._conversations.get_for_participant(conversation_id, reader_id)

        if message_ids is not None:
            requested = list(dict.fromkeys(message_ids))
            if not requested:
                return []
            existing = await self._message_repo.existing_ids(conversation_id, requested)
            missing = [mid for mid in requested if mid not in existing]
            if missing:
                raise NotFoundError(f"Messages not found in conversation {conversation_id}: {', '.join(map(str, missing))}")
            candidates = await self._message_repo.unseen_ids(conversation_id, reader_id, requested)
        else:
            candidates = await self._message_repo.unseen_ids(conversation_id, reader_id)

        if not candidates:
            return []

        seen_at = self._clock().isoformat()
        await self._message_repo.mark_seen(conversation_id, reader_id, candidates, seen_at)
        await self._publish(conversation_id, seen_event(reader_id, seen_at, candidates))
        return candidates

    async def unread_count(self, conversation_id: str, reader_id: str) -> int:
        await self._conversations.get(conversation_id)
        return await self._message_repo.count_unread(conversation_id, reader_id)

    async def _publish(self, conversation_id: str, payload: str) -> None:
        if self._bus is None:
            self._bus = await get_bus()
        try:
            await self._bus.publish(conversation_channel(conversation_id), payload)
        except Exception:
            logger.exception("publishing receipts to conversation %s failed", conversation_id)
