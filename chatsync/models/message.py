from datetime import datetime
from typing import Dict, Optional, TypedDict


class VoiceNoteDocument(TypedDict):
    url: str
    duration_seconds: float


class ReplySnapshotDocument(TypedDict, total=False):
    # copied from the replied-to message at append time
    id: str
    sender_id: str
    text: str
    voice_note: VoiceNoteDocument


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    # exactly one of text / voice_note
    text: Optional[str]
    voice_note: Optional[VoiceNoteDocument]
    timestamp: datetime
    # read receipts: reader id -> ISO timestamp
    seen_by: Dict[str, str]
    reply_to: Optional[ReplySnapshotDocument]
