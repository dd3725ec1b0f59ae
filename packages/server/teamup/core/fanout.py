"""
Topic fan-out between application instances.

Two backends share one small interface:

- ``LocalFanout``: in-process queues, for a single instance and for tests
- ``RedisFanout``: Redis Pub/Sub, for several instances behind a balancer

Messages are JSON-serializable dicts. Delivery is best effort; consumers
must treat a message as a hint to re-read authoritative state.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as redis

from teamup.core.config import Settings
from teamup.core.redis import get_redis

logger = logging.getLogger(__name__)

REDIS_FANOUT_PREFIX = "teamup:fanout:"
LOCAL_QUEUE_SIZE = 1000


class Subscription(ABC):
    """Receiving end of one topic subscription."""

    @abstractmethod
    async def get(self, timeout: float) -> Optional[dict[str, Any]]:
        """Next message, or None if nothing arrived within ``timeout`` seconds."""

    @abstractmethod
    async def close(self) -> None:
        ...


class Fanout(ABC):
    @abstractmethod
    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def subscribe(self, topic: str) -> Subscription:
        ...

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------

class LocalSubscription(Subscription):
    def __init__(self, fanout: "LocalFanout", topic: str) -> None:
        self.topic = topic
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=LOCAL_QUEUE_SIZE)
        self._fanout = fanout

    async def get(self, timeout: float) -> Optional[dict[str, Any]]:
        # Must not swallow a cancel that races the item (PresenceBroadcaster.stop)
        try:
            async with asyncio.timeout(timeout):
                return await self.queue.get()
        except TimeoutError:
            return None

    async def close(self) -> None:
        self._fanout._remove(self)


class LocalFanout(Fanout):
    def __init__(self) -> None:
        self._subscriptions: dict[str, set[LocalSubscription]] = {}

    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        for sub in list(self._subscriptions.get(topic, ())):
            try:
                sub.queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Fan-out queue full on topic %s, dropping message", topic)

    async def subscribe(self, topic: str) -> LocalSubscription:
        sub = LocalSubscription(self, topic)
        self._subscriptions.setdefault(topic, set()).add(sub)
        return sub

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    def _remove(self, sub: LocalSubscription) -> None:
        subs = self._subscriptions.get(sub.topic)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscriptions[sub.topic]


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

class RedisSubscription(Subscription):
    def __init__(self, pubsub: redis.client.PubSub, channel: str) -> None:
        self._pubsub = pubsub
        self._channel = channel

    async def get(self, timeout: float) -> Optional[dict[str, Any]]:
        message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if message is None or message["type"] != "message":
            return None
        try:
            return json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("Dropping malformed fan-out message on %s", self._channel)
            return None

    async def close(self) -> None:
        try:
            await self._pubsub.unsubscribe(self._channel)
        finally:
            await self._pubsub.aclose()


class RedisFanout(Fanout):
    def __init__(self, client: Optional[redis.Redis] = None) -> None:
        self._client = client

    async def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        client = await self._redis()
        await client.publish(f"{REDIS_FANOUT_PREFIX}{topic}", json.dumps(message))

    async def subscribe(self, topic: str) -> RedisSubscription:
        client = await self._redis()
        channel = f"{REDIS_FANOUT_PREFIX}{topic}"
        pubsub = client.pubsub()
        await pubsub.subscribe(channel)
        return RedisSubscription(pubsub, channel)


def build_fanout(settings: Settings) -> Fanout:
    if settings.presence_backend == "redis":
        return RedisFanout()
    return LocalFanout()
