from fastapi import APIRouter, Depends, Query

from chatsync.schemas.user import UserPublic
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import get_current_user, get_user_service


router = APIRouter(prefix="/users", tags=["user"])


@router.get("/search")
async def search_users(
    q: str = Query(..., min_length=1),
    current_user: UserPublic = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    users = await service.find_users(q)
    return {"users": [user.model_dump() for user in users if user.id != current_user.id]}


@router.get("/{user_id}")
async def get_user(user_id: str, current_user: UserPublic = Depends(get_current_user), service: UserService = Depends(get_user_service)):
    return (await service.get_user(user_id)).model_dump()
