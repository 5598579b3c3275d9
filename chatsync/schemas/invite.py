from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class InviteStatus(str, Enum):

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Invite(BaseModel):

    id: str
    from_user: str
    to_user: str
    status: InviteStatus
    timestamp: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    def other_party(self, user_id: str) -> Optional[str]:
        if self.from_user == user_id:
            return self.to_user
        if self.to_user == user_id:
            return self.from_user
        return None


class InviteResponse(BaseModel):

    status: InviteStatus
