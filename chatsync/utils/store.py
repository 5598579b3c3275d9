import functools
from typing import Any, Awaitable, Callable, Optional, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from chatsync.errors import TransientStoreError
from chatsync.utils.logger import logger

T = TypeVar("T")


def store_call(operation: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Translate driver failures of a repository coroutine into TransientStoreError."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except PyMongoError as exc:
                logger.warning("store operation %s failed: %s", operation, exc)
                raise TransientStoreError(f"{operation} failed: {exc}") from exc

        return wrapper

    return decorator


def to_object_id(value: str) -> Optional[ObjectId]:
    # None means "cannot exist", callers turn it into a miss
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def normalize_id(doc: Optional[dict]) -> Optional[dict]:
    if doc:
        doc["_id"] = str(doc["_id"])  # normalize to string for API layer
    return doc
