from datetime import datetime
from typing import Literal, Optional, TypedDict


InviteStatusValue = Literal["pending", "accepted", "rejected"]


class InviteDocument(TypedDict, total=False):
    _id: str
    from_user: str
    to_user: str
    status: InviteStatusValue
    timestamp: datetime
    responded_at: Optional[datetime]
