from datetime import datetime, timezone, tzinfo
from typing import Callable, Dict, List, Optional

from chatsync.errors import NotFoundError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.chat import ConversationSummary, Message
from chatsync.schemas.user import UserPublic
from chatsync.services.invite_service import InviteService
from chatsync.services.message_service import to_message
from chatsync.services.user_service import UserService
from chatsync.utils.formatting import format_preview, format_timestamp_label
from chatsync.utils.logger import logger


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_last_message_read(latest: Optional[Message], user_id: str) -> bool:
    if latest is None or latest.sender_id == user_id:
        return True
    return user_id in latest.seen_by


def sort_summaries(rows: List[ConversationSummary]) -> List[ConversationSummary]:
    """Most recent activity first; rows without messages keep their order at the end."""
    active = [row for row in rows if row.last_message_time is not None]
    idle = [row for row in rows if row.last_message_time is None]
    return sorted(active, key=lambda row: row.last_message_time, reverse=True) + idle


class SummaryService:
    """Builds chat-list rows for every accepted contact of a user."""

    def __init__(
        self,
        invite_service: InviteService,
        user_service: UserService,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._invites = invite_service
        self._users = user_service
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._tz = tz or timezone.utc
        self._clock = clock

    async def list_conversations(self, user_id: str, now: Optional[datetime] = None) -> List[ConversationSummary]:
        now = now or self._clock()
        contacts = await self._invites.list_accepted(user_id)

        # one query for all conversations, oldest first so duplicates resolve like find_between
        by_peer: Dict[str, dict] = {}
        for doc in await self._conversation_repo.list_for_user(user_id):
            for participant in doc.get("participants", []):
                if participant != user_id:
                    by_peer.setdefault(participant, doc)

        rows: List[ConversationSummary] = []
        for peer_id in contacts:
            try:
                peer = await self._users.get_user(peer_id)
            except NotFoundError:
                logger.warning("contact %s of %s is missing from the user directory", peer_id, user_id)
                continue
            rows.append(await self._summarize(user_id, peer, by_peer.get(peer_id), now))
        return sort_summaries(rows)

    async def _summarize(
        self, user_id: str, peer: UserPublic, conversation: Optional[dict], now: datetime
    ) -> ConversationSummary:
        latest: Optional[Message] = None
        unread = 0
        conversation_id = None
        if conversation:
            conversation_id = str(conversation["_id"])
            latest_doc = await self._message_repo.get_latest(conversation_id)
            latest = to_message(latest_doc) if latest_doc else None
            if latest is not None:
                unread = await self._message_repo.count_unread(conversation_id, user_id)

        return ConversationSummary(
            conversation_id=conversation_id,
            peer_id=peer.id,
            peer_name=peer.name,
            peer_avatar=peer.profile_pic,
            preview_text=format_preview(latest, user_id, unread),
            preview_timestamp_label=format_timestamp_label(latest.timestamp if latest else None, now, self._tz),
            unread_count=unread,
            is_last_message_read=is_last_message_read(latest, user_id),
            last_message_time=latest.timestamp if latest else None,
        )
