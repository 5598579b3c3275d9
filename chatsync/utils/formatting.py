"""Read-side text projections for the chat screens.

Everything here is pure: callers pass the clock and the display timezone.
"""
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chatsync.errors import ValidationError
from chatsync.schemas.chat import Message, MessageGroup


VOICE_NOTE_PREVIEW = "🎤 Voice note"
EMPTY_CONVERSATION_PREVIEW = "Start a conversation!"
SENT_PREFIX = "sent: "
TICK_SENT = " ✓"
TICK_SEEN = " ✓✓"


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone: {name!r}") from exc


def _aware(ts: datetime) -> datetime:
    # naive datetimes from the store are UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def message_preview(message: Message) -> str:
    """What a message looks like in one line: its text or the voice-note marker."""
    if message.voice_note is not None:
        return VOICE_NOTE_PREVIEW
    return message.text or ""


def format_preview(latest: Optional[Message], user_id: str, unread_count: int) -> str:
    if latest is None:
        return EMPTY_CONVERSATION_PREVIEW

    body = message_preview(latest)
    if latest.sender_id == user_id:
        return SENT_PREFIX + body + (TICK_SEEN if latest.seen_by else TICK_SENT)

    if unread_count > 1:
        return f"({unread_count}) new msgs"
    if latest.voice_note is not None and unread_count == 1:
        return "1 new voice msg"
    return body


def format_timestamp_label(ts: Optional[datetime], now: datetime, tz: tzinfo) -> str:
    if ts is None:
        return "Now"
    ts = _aware(ts)
    age = _aware(now) - ts
    if age < timedelta(hours=1):
        return "Now"
    local = ts.astimezone(tz)
    if age < timedelta(hours=24):
        return local.strftime("%H:%M")
    if age < timedelta(hours=48):
        return "Yesterday"
    return f"{local:%b} {local.day}"


def format_message_time(ts: datetime, tz: tzinfo) -> str:
    return _aware(ts).astimezone(tz).strftime("%H:%M")


def local_date(ts: datetime, tz: tzinfo) -> date:
    return _aware(ts).astimezone(tz).date()


def group_by_day(messages: Iterable[Message], tz: tzinfo) -> List[MessageGroup]:
    """Bucket messages by local calendar day, both levels ascending."""
    buckets: "OrderedDict[date, List[Message]]" = OrderedDict()
    for message in sorted(messages, key=Message.sort_key):
        buckets.setdefault(local_date(message.timestamp, tz), []).append(message)
    return [MessageGroup(date=day, messages=items) for day, items in sorted(buckets.items())]


def format_date_header(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day:%A}, {day:%B} {day.day}, {day.year}"
