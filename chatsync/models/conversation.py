from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    participants: List[str]
    # sorted participant ids joined by ":", unique
    pair_key: str
    created_at: datetime
    # denormalized copy of the newest message
    last_message: Optional[str]
    last_message_time: Optional[datetime]
    last_message_sender_id: Optional[str]
