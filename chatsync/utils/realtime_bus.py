import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis

from chatsync.config import get_settings
from chatsync.utils.logger import logger


OnMessage = Callable[[str], Awaitable[None]]


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class LocalBus:
    """In-process fanout, used when no Redis is configured."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[OnMessage]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for on_message in list(self._listeners.get(channel, [])):
            try:
                await on_message(message)
            except Exception:
                logger.exception("listener on %s failed", channel)

    async def subscribe(self, channel: str, on_message: OnMessage):
        listeners = self._listeners.setdefault(channel, [])
        listeners.append(on_message)
        bus = self

        class _Sub:
            def __init__(self_inner) -> None:
                self_inner._stopped = asyncio.Event()

            async def run(self_inner):
                await self_inner._stopped.wait()

            async def cancel(self_inner):
                bus._remove(channel, on_message)
                self_inner._stopped.set()

        return _Sub()

    def listener_count(self, channel: str) -> int:
        return len(self._listeners.get(channel, []))

    def _remove(self, channel: str, on_message: OnMessage) -> None:
        listeners = self._listeners.get(channel)
        if not listeners:
            return
        try:
            listeners.remove(on_message)
        except ValueError:
            pass
        if not listeners:
            del self._listeners[channel]

    async def close(self) -> None:
        self._listeners.clear()


class RedisBus:

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        self._redis = client if client is not None else redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except redis.RedisError as exc:
                        logger.warning("redis subscription %s failed: %s", channel, exc)
                        await asyncio.sleep(0.5)
                        continue
                    if not self_inner._running:
                        break
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        try:
                            await on_message(data)
                        except Exception:
                            logger.exception("listener on %s failed", channel)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except redis.RedisError as exc:
                    logger.warning("redis unsubscribe %s failed: %s", channel, exc)

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    if not url:
        _bus = LocalBus()
    else:
        _bus = RedisBus(url)
        logger.info("realtime bus using redis at %s", url)
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
        _bus = None
