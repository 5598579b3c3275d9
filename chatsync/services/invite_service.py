from typing import List

from chatsync.errors import NotFoundError, ValidationError
from chatsync.repositories.invite_repository import InviteRepository
from chatsync.schemas.invite import Invite, InviteStatus
from chatsync.services.conversation_service import ConversationService
from chatsync.services.user_service import UserService
from chatsync.utils.followup import run_followup
from chatsync.utils.logger import logger


def to_invite(doc: dict) -> Invite:
    return Invite(
        id=str(doc["_id"]),
        from_user=doc["from_user"],
        to_user=doc["to_user"],
        status=doc["status"],
        timestamp=doc.get("timestamp"),
        responded_at=doc.get("responded_at"),
    )


class InviteService:
    def __init__(self, invite_repo: InviteRepository, user_service: UserService, conversation_service: ConversationService):
        self.invite_repo = invite_repo
        self.user_service = user_service
        self.conversation_service = conversation_service

    async def send_invite(self, from_user: str, to_user: str) -> Invite:
        if from_user == to_user:
            raise ValidationError("Cannot invite yourself")
        for user_id in (from_user, to_user):
            if not await self.user_service.exists(user_id):
                raise NotFoundError(f"User {user_id} not found")
        existing = await self.invite_repo.find_open_between(from_user, to_user)
        if existing:
            # still pending, or the two are already connected
            raise ValidationError(f"An invite between these users is already {existing['status']}")
        invite = to_invite(await self.invite_repo.create_invite(from_user, to_user))
        logger.info("invite %s sent from %s to %s", invite.id, from_user, to_user)
        return invite

    async def respond(self, invite_id: str, responder_id: str, status: InviteStatus) -> Invite:
        try:
            status = InviteStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown invite status: {status!r}") from exc
        if status == InviteStatus.PENDING:
            raise ValidationError("An invite can only be accepted or rejected")
        doc = await self.invite_repo.get_invite(invite_id)
        if not doc:
            raise NotFoundError(f"Invite {invite_id} not found")
        if doc["to_user"] != responder_id:
            raise ValidationError("Only the invited user can respond to an invite")
        if doc["status"] != InviteStatus.PENDING.value:
            raise ValidationError(f"Invite was already {doc['status']}")

        updated = await self.invite_repo.transition(invite_id, status.value)
        if not updated:
            # someone else answered between the read and the write
            raise ValidationError("Invite was already answered")
        invite = to_invite(updated)

        if invite.status == InviteStatus.ACCEPTED:
            await run_followup(
                f"conversation for accepted invite {invite.id}",
                lambda: self.conversation_service.find_or_create(invite.to_user, invite.from_user),
            )
        return invite

    async def list_accepted(self, user_id: str) -> List[str]:
        """Contacts of ``user_id``, oldest connection first."""
        contacts: List[str] = []
        for doc in await self.invite_repo.list_accepted_for(user_id):
            other = to_invite(doc).other_party(user_id)
            if other and other not in contacts:
                contacts.append(other)
        return contacts

    async def list_pending(self, user_id: str) -> List[Invite]:
        return [to_invite(doc) for doc in await self.invite_repo.list_pending_for(user_id)]

    async def pending_count(self, user_id: str) -> int:
        return await self.invite_repo.count_pending_for(user_id)

    async def are_connected(self, user_a: str, user_b: str) -> bool:
        existing = await self.invite_repo.find_open_between(user_a, user_b)
        return bool(existing and existing["status"] == InviteStatus.ACCEPTED.value)
