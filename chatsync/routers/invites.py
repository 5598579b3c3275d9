from fastapi import APIRouter, Depends

from chatsync.schemas.invite import InviteResponse
from chatsync.schemas.user import UserPublic
from chatsync.services.invite_service import InviteService
from chatsync.utils.dependencies import get_current_user, get_invite_service

router = APIRouter(prefix="/invites", tags=["invite"])


@router.post("/{target_user_id}")
async def send_invite(target_user_id: str, current_user: UserPublic = Depends(get_current_user), service: InviteService = Depends(get_invite_service)):
    invite = await service.send_invite(current_user.id, target_user_id)
    return {"msg": "Invite sent", "invite": invite.model_dump(mode="json")}


@router.post("/{invite_id}/respond")
async def respond_to_invite(invite_id: str, body: InviteResponse, current_user: UserPublic = Depends(get_current_user), service: InviteService = Depends(get_invite_service)):
    invite = await service.respond(invite_id, current_user.id, body.status)
    return {"invite": invite.model_dump(mode="json")}


@router.get("/pending")
async def pending_invites(current_user: UserPublic = Depends(get_current_user), service: InviteService = Depends(get_invite_service)):
    invites = await service.list_pending(current_user.id)
    return {"invites": [invite.model_dump(mode="json") for invite in invites], "count": len(invites)}


@router.get("/contacts")
async def contacts(current_user: UserPublic = Depends(get_current_user), service: InviteService = Depends(get_invite_service)):
    return {"contacts": await service.list_accepted(current_user.id)}
