import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import pytest
from bson import ObjectId

from chatsync.config import get_settings
from chatsync.errors import TransientStoreError
from chatsync.repositories.conversation_repository import pair_key
from chatsync.repositories.message_repository import make_cursor, parse_cursor
from chatsync.services.conversation_service import ConversationService
from chatsync.services.invite_service import InviteService
from chatsync.services.message_service import MessageService
from chatsync.services.receipt_service import ReceiptService
from chatsync.services.summary_service import SummaryService
from chatsync.services.user_service import UserService
from chatsync.utils.realtime_bus import LocalBus


START = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Stands in for the store's server clock: each reading moves one step forward."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class FakeMessageRepository:
    def __init__(self, clock: FakeClock) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self._clock = clock
        self.fail_insert = False
        self.fail_reads = False

    def _for(self, conversation_id: str) -> List[Dict[str, Any]]:
        items = [d for d in self.docs.values() if d["conversation_id"] == conversation_id]
        return sorted(items, key=lambda d: (d["timestamp"], d["_id"]))

    def _unseen(self, conversation_id: str, reader_id: str) -> List[Dict[str, Any]]:
        return [
            d for d in self._for(conversation_id)
            if d["sender_id"] != reader_id and reader_id not in d["seen_by"]
        ]

    async def insert_message(self, conversation_id, sender_id, text=None, voice_note=None, reply_to=None):
        if self.fail_insert:
            raise TransientStoreError("messages.insert failed: connection refused")
        doc: Dict[str, Any] = {
            "_id": str(ObjectId()),
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "seen_by": {},
            "timestamp": self._clock(),
        }
        if text is not None:
            doc["text"] = text
        if voice_note is not None:
            doc["voice_note"] = copy.deepcopy(voice_note)
        if reply_to is not None:
            doc["reply_to"] = copy.deepcopy(reply_to)
        self.docs[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_message(self, conversation_id, message_id):
        doc = self.docs.get(message_id)
        if doc and doc["conversation_id"] == conversation_id:
            return copy.deepcopy(doc)
        return None

    async def list_all(self, conversation_id):
        if self.fail_reads:
            raise TransientStoreError("messages.list failed: connection refused")
        return copy.deepcopy(self._for(conversation_id))

    async def get_page(self, conversation_id, limit=50, cursor=None):
        items = list(reversed(self._for(conversation_id)))
        if cursor:
            ts, oid = parse_cursor(cursor)
            items = [d for d in items if (d["timestamp"], d["_id"]) < (ts, str(oid))]
        items = items[:limit]
        next_cursor = make_cursor(items[-1]["timestamp"], items[-1]["_id"]) if len(items) == limit else None
        return copy.deepcopy(list(reversed(items))), next_cursor

    async def get_latest(self, conversation_id):
        items = self._for(conversation_id)
        return copy.deepcopy(items[-1]) if items else None

    async def count_unread(self, conversation_id, reader_id):
        return len(self._unseen(conversation_id, reader_id))

    async def existing_ids(self, conversation_id, message_ids: Iterable[str]):
        return {d["_id"] for d in self._for(conversation_id) if d["_id"] in set(message_ids)}

    async def unseen_ids(self, conversation_id, reader_id, message_ids=None):
        wanted = set(message_ids) if message_ids is not None else None
        return [
            d["_id"] for d in self._unseen(conversation_id, reader_id)
            if wanted is None or d["_id"] in wanted
        ]

    async def mark_seen(self, conversation_id, reader_id, message_ids, seen_at):
        modified = 0
        for doc in self._unseen(conversation_id, reader_id):
            if doc["_id"] in set(message_ids):
                doc["seen_by"][reader_id] = seen_at
                modified += 1
        return modified


class FakeConversationRepository:
    def __init__(self, clock: FakeClock) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self._clock = clock
        self.fail_updates = 0
        self.fail_creates = 0
        self.update_calls = 0

    async def get(self, conversation_id):
        doc = self.docs.get(conversation_id)
        return copy.deepcopy(doc) if doc else None

    async def find_between(self, user_a, user_b):
        for doc in sorted(self.docs.values(), key=lambda d: (d["created_at"], d["_id"])):
            if user_a in doc["participants"] and user_b in doc["participants"]:
                return copy.deepcopy(doc)
        return None

    async def create(self, user_a, user_b):
        if self.fail_creates:
            self.fail_creates -= 1
            raise TransientStoreError("conversations.create failed: timeout")
        key = pair_key(user_a, user_b)
        for doc in self.docs.values():
            if doc.get("pair_key") == key:
                return copy.deepcopy(doc)
        doc = self.insert_raw([user_a, user_b], pair_key=key)
        return copy.deepcopy(doc)

    def insert_raw(self, participants, pair_key: Optional[str] = None, created_at: Optional[datetime] = None):
        doc = {
            "_id": str(ObjectId()),
            "participants": list(participants),
            "created_at": created_at or self._clock(),
            "last_message": None,
            "last_message_time": None,
            "last_message_sender_id": None,
        }
        if pair_key is not None:
            doc["pair_key"] = pair_key
        self.docs[doc["_id"]] = doc
        return doc

    async def update_last_message(self, conversation_id, preview, sent_at, sender_id):
        self.update_calls += 1
        if self.fail_updates:
            self.fail_updates -= 1
            raise TransientStoreError("conversations.update_last_message failed: timeout")
        doc = self.docs.get(conversation_id)
        if not doc:
            return False
        doc.update(last_message=preview, last_message_time=sent_at, last_message_sender_id=sender_id)
        return True

    async def list_for_user(self, user_id):
        items = [d for d in self.docs.values() if user_id in d["participants"]]
        return copy.deepcopy(sorted(items, key=lambda d: (d["created_at"], d["_id"])))


class FakeInviteRepository:
    def __init__(self, clock: FakeClock) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self._clock = clock

    async def create_invite(self, from_user, to_user):
        doc = {
            "_id": str(ObjectId()),
            "from_user": from_user,
            "to_user": to_user,
            "status": "pending",
            "timestamp": self._clock(),
        }
        self.docs[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_invite(self, invite_id):
        doc = self.docs.get(invite_id)
        return copy.deepcopy(doc) if doc else None

    async def find_open_between(self, user_a, user_b):
        for doc in self.docs.values():
            if doc["status"] in ("pending", "accepted") and {doc["from_user"], doc["to_user"]} == {user_a, user_b}:
                return copy.deepcopy(doc)
        return None

    async def transition(self, invite_id, status):
        doc = self.docs.get(invite_id)
        if not doc or doc["status"] != "pending":
            return None
        doc["status"] = status
        doc["responded_at"] = self._clock()
        return copy.deepcopy(doc)

    def _sorted(self, predicate):
        items = [d for d in self.docs.values() if predicate(d)]
        return copy.deepcopy(sorted(items, key=lambda d: (d["timestamp"], d["_id"])))

    async def list_accepted_for(self, user_id):
        return self._sorted(lambda d: d["status"] == "accepted" and user_id in (d["from_user"], d["to_user"]))

    async def list_pending_for(self, user_id):
        return self._sorted(lambda d: d["status"] == "pending" and d["to_user"] == user_id)

    async def count_pending_for(self, user_id):
        return len(await self.list_pending_for(user_id))


class FakeUserRepository:
    def __init__(self, users: List[Dict[str, Any]]) -> None:
        self.docs = {u["_id"]: u for u in users}

    async def get_user_by_id(self, user_id):
        doc = self.docs.get(user_id)
        return copy.deepcopy(doc) if doc else None

    async def get_user_by_email(self, email):
        for doc in self.docs.values():
            if doc["email"] == email:
                return copy.deepcopy(doc)
        return None

    async def find_users_by_name(self, prefix):
        return [copy.deepcopy(d) for d in self.docs.values() if d["name"].lower().startswith(prefix.lower())]

    async def find_users_by_mobile(self, prefix):
        return [copy.deepcopy(d) for d in self.docs.values() if (d.get("mobile") or "").startswith(prefix)]


USERS = [
    {"_id": "alice", "name": "Alice Martin", "email": "alice@example.com", "mobile": "5550001", "profile_pic": "https://img.example.com/alice.png"},
    {"_id": "bob", "name": "Bob Stone", "email": "bob@example.com", "mobile": "5550002"},
    {"_id": "carol", "name": "Carol Alves", "email": "carol@example.com", "mobile": "4440003"},
    {"_id": "dave", "name": "Dave Ng", "email": "dave@example.com"},
]


@pytest.fixture(autouse=True)
def fast_followups():
    settings = get_settings()
    original = settings.followup_retry_delay_seconds
    settings.followup_retry_delay_seconds = 0
    try:
        yield
    finally:
        settings.followup_retry_delay_seconds = original


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def message_repo(clock):
    return FakeMessageRepository(clock)


@pytest.fixture
def conversation_repo(clock):
    return FakeConversationRepository(clock)


@pytest.fixture
def invite_repo(clock):
    return FakeInviteRepository(clock)


@pytest.fixture
def user_repo():
    return FakeUserRepository(copy.deepcopy(USERS))


@pytest.fixture
def conversation_service(conversation_repo):
    return ConversationService(conversation_repo)


@pytest.fixture
def message_service(message_repo, conversation_repo, bus):
    return MessageService(message_repo, conversation_repo, bus=bus)


@pytest.fixture
def receipt_service(message_repo, conversation_repo, bus, clock):
    return ReceiptService(message_repo, conversation_repo, bus=bus, clock=clock)


@pytest.fixture
def user_service(user_repo):
    return UserService(user_repo)


@pytest.fixture
def invite_service(invite_repo, user_service, conversation_service):
    return InviteService(invite_repo, user_service, conversation_service)


@pytest.fixture
def summary_service(invite_service, user_service, conversation_repo, message_repo, clock):
    return SummaryService(invite_service, user_service, conversation_repo, message_repo, clock=clock)


@pytest.fixture
def connect(invite_service, conversation_service):
    """Invite and accept, returning the conversation the acceptance created."""

    async def _connect(user_a, user_b):
        invite = await invite_service.send_invite(user_a, user_b)
        await invite_service.respond(invite.id, user_b, "accepted")
        return await conversation_service.find_between(user_a, user_b)

    return _connect
