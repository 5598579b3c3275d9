from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class VoiceNote(BaseModel):

    url: str = Field(min_length=1)
    duration_seconds: float = Field(ge=0)


class ReplySnapshot(BaseModel):

    id: str
    sender_id: str
    text: Optional[str] = None
    voice_note: Optional[VoiceNote] = None


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    text: Optional[str] = None
    voice_note: Optional[VoiceNote] = None
    timestamp: datetime
    seen_by: Dict[str, str] = Field(default_factory=dict)
    reply_to: Optional[ReplySnapshot] = None

    @property
    def is_voice_note(self) -> bool:
        return self.voice_note is not None

    def sort_key(self):
        return (self.timestamp, self.id)


class MessageCreate(BaseModel):

    text: Optional[str] = None
    voice_note: Optional[VoiceNote] = None
    reply_to_id: Optional[str] = None


class SeenRequest(BaseModel):

    # None marks every unread message of the conversation
    message_ids: Optional[List[str]] = None


class Conversation(BaseModel):

    id: str
    participants: List[str]
    created_at: Optional[datetime] = None
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    last_message_sender_id: Optional[str] = None

    def peer_of(self, user_id: str) -> Optional[str]:
        for participant in self.participants:
            if participant != user_id:
                return participant
        return None


class ConversationCreate(BaseModel):

    peer_id: str


class MessageGroup(BaseModel):

    date: date
    messages: List[Message]


class DeliveryStatus(str, Enum):

    SENT = "Sent"
    DELIVERED = "Delivered"
    SEEN = "Seen"


class ConversationSummary(BaseModel):

    conversation_id: Optional[str] = None
    peer_id: str
    peer_name: str
    peer_avatar: Optional[str] = None
    preview_text: str
    preview_timestamp_label: str
    unread_count: int = 0
    is_last_message_read: bool = True
    last_message_time: Optional[datetime] = None
