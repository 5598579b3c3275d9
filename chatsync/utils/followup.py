import asyncio
from typing import Awaitable, Callable, Optional

from pymongo.errors import PyMongoError

from chatsync.config import get_settings
from chatsync.errors import ChatError
from chatsync.utils.logger import logger


async def run_followup(
    label: str,
    operation: Callable[[], Awaitable[object]],
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
) -> bool:
    """Run the second write of a denormalized pair.

    The first write already landed, so a failure here is retried on its own and
    finally logged, never raised. Returns whether the write went through.
    """
    settings = get_settings()
    attempts = attempts or settings.followup_write_attempts
    delay = settings.followup_retry_delay_seconds if delay is None else delay

    for attempt in range(1, attempts + 1):
        try:
            await operation()
            return True
        except (ChatError, PyMongoError) as exc:
            if attempt < attempts:
                logger.warning("%s failed (attempt %d/%d): %s", label, attempt, attempts, exc)
                await asyncio.sleep(delay * attempt)
            else:
                logger.error("%s failed after %d attempts, left stale: %s", label, attempts, exc)
    return False
