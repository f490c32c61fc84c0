import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis

from grubby_chat.config import get_settings


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]

RETRY_DELAY_SECONDS = 0.5


class InMemoryBus:
    """Single-process fanout. Used when REDIS_URL is not configured."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[OnMessage]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for on_message in list(self._subscribers.get(channel, [])):
            try:
                await on_message(message)
            except Exception:
                logger.exception("Subscriber on %s failed", channel)

    async def subscribe(self, channel: str, on_message: OnMessage):
        subscribers = self._subscribers.setdefault(channel, [])
        subscribers.append(on_message)
        bus_subscribers = self._subscribers

        class _Sub:
            def __init__(self) -> None:
                self._stopped = asyncio.Event()

            async def run(self):
                # delivery happens inside publish(); just stay alive until cancelled
                await self._stopped.wait()

            async def cancel(self):
                handlers = bus_subscribers.get(channel, [])
                if on_message in handlers:
                    handlers.remove(on_message)
                self._stopped.set()

        return _Sub()


class RedisBus:

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

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
                        if msg and msg.get("type") == "message":
                            data = msg.get("data")
                            if isinstance(data, bytes):
                                data = data.decode("utf-8")
                            await on_message(data)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        # connection drops are retried by the next poll
                        logger.warning("Redis subscription on %s failed, retrying", channel, exc_info=True)
                        await asyncio.sleep(RETRY_DELAY_SECONDS)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except Exception:
                    logger.debug("Error closing Redis subscription on %s", channel, exc_info=True)

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url: Optional[str] = get_settings().redis_url
    if url:
        _bus = RedisBus(url)
        logger.info("Realtime bus: Redis pub/sub")
    else:
        _bus = InMemoryBus()
        logger.info("Realtime bus: in-process (REDIS_URL not set)")
    return _bus


async def close_bus() -> None:
    global _bus
    if isinstance(_bus, RedisBus):
        await _bus.close()
    _bus = None


async def bus_dependency():
    return await get_bus()
