"""
Presence broadcaster for lobby viewers.

Features:
- One record per open /ws/presence socket, deduplicated by user in snapshots
- Every change pushes the full snapshot to every local viewer
- Sends run concurrently with a per-send timeout; failed sockets are reaped
- Ping/pong liveness: sockets that miss a ping are dropped on the next tick
- Optional fan-out so several instances show the same presence set
- Process-local registry, or a Redis registry whose per-instance hash
  expires if the instance stops refreshing it
"""

from __future__ import annotations

import asyncio
import json
import logging
import unicodedata
import uuid
from abc import ABC, abstractmethod
from typing import Iterable, Optional

import redis.asyncio as redis
from fastapi import WebSocket

from teamup.core.fanout import Fanout, Subscription
from teamup.core.redis import get_redis
from teamup_shared.schemas.users import OnlineUser, PresenceMessage

logger = logging.getLogger(__name__)

PRESENCE_TOPIC = "presence"
REDIS_PRESENCE_INSTANCES_KEY = "teamup:presence:instances"
REDIS_PRESENCE_INSTANCE_PREFIX = "teamup:presence:instance:"
PING_FRAME = json.dumps({"type": "ping"})


def compute_snapshot(users: Iterable[OnlineUser]) -> list[OnlineUser]:
    """Deduplicate by user id and sort by display name."""
    by_id: dict[str, OnlineUser] = {}
    for user in users:
        by_id.setdefault(user.user_id, user)
    return sorted(
        by_id.values(),
        key=lambda u: (unicodedata.normalize("NFKC", u.name).casefold(), u.name, u.user_id),
    )


class PresenceConnection:
    """One open presence socket."""

    __slots__ = ("id", "websocket", "user", "alive")

    def __init__(self, websocket: WebSocket, user: OnlineUser):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user = user
        self.alive = True


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------

class PresenceRegistry(ABC):
    @abstractmethod
    async def add(self, connection_id: str, user: OnlineUser) -> None:
        ...

    @abstractmethod
    async def remove(self, connection_id: str) -> None:
        ...

    @abstractmethod
    async def members(self) -> list[OnlineUser]:
        ...

    async def refresh(self) -> None:
        pass

    async def close(self) -> None:
        pass


class LocalPresenceRegistry(PresenceRegistry):
    def __init__(self) -> None:
        self._entries: dict[str, OnlineUser] = {}

    async def add(self, connection_id: str, user: OnlineUser) -> None:
        self._entries[connection_id] = user

    async def remove(self, connection_id: str) -> None:
        self._entries.pop(connection_id, None)

    async def members(self) -> list[OnlineUser]:
        return list(self._entries.values())

    async def close(self) -> None:
        self._entries.clear()


class RedisPresenceRegistry(PresenceRegistry):
    """Shared registry: one Redis hash per instance, connection_id -> user JSON."""

    def __init__(
        self,
        instance_id: str,
        ttl_seconds: int,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self.instance_id = instance_id
        self.ttl_seconds = ttl_seconds
        self._client = client
        self._key = f"{REDIS_PRESENCE_INSTANCE_PREFIX}{instance_id}"

    async def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def add(self, connection_id: str, user: OnlineUser) -> None:
        client = await self._redis()
        async with client.pipeline() as pipe:
            pipe.hset(self._key, connection_id, user.model_dump_json())
            pipe.expire(self._key, self.ttl_seconds)
            pipe.sadd(REDIS_PRESENCE_INSTANCES_KEY, self.instance_id)
            await pipe.execute()

    async def remove(self, connection_id: str) -> None:
        client = await self._redis()
        await client.hdel(self._key, connection_id)

    async def members(self) -> list[OnlineUser]:
        client = await self._redis()
        instances = sorted(await client.smembers(REDIS_PRESENCE_INSTANCES_KEY))
        if not instances:
            return []

        async with client.pipeline() as pipe:
            for instance in instances:
                pipe.hvals(f"{REDIS_PRESENCE_INSTANCE_PREFIX}{instance}")
            results = await pipe.execute()

        users: list[OnlineUser] = []
        for instance, values in zip(instances, results):
            if not values:
                # Expired or empty: the instance re-adds itself on its next connect
                if instance != self.instance_id:
                    await client.srem(REDIS_PRESENCE_INSTANCES_KEY, instance)
                continue
            users.extend(OnlineUser.model_validate_json(v) for v in values)
        return users

    async def refresh(self) -> None:
        client = await self._redis()
        await client.expire(self._key, self.ttl_seconds)

    async def close(self) -> None:
        client = await self._redis()
        async with client.pipeline() as pipe:
            pipe.delete(self._key)
            pipe.srem(REDIS_PRESENCE_INSTANCES_KEY, self.instance_id)
            await pipe.execute()


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------

class PresenceBroadcaster:
    """
    Owns the presence sockets of this instance.

    Created at application startup (``app.state.presence``) and stopped at
    shutdown. The WebSocket endpoint authenticates before calling connect()
    and always calls disconnect() in a finally block.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        fanout: Optional[Fanout] = None,
        *,
        ping_interval: float = 30.0,
        send_timeout: float = 5.0,
        instance_id: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.fanout = fanout
        self.ping_interval = ping_interval
        self.send_timeout = send_timeout
        self.instance_id = instance_id or uuid.uuid4().hex
        self._connections: dict[str, PresenceConnection] = {}
        self._tasks: list[asyncio.Task] = []
        self._subscription: Optional[Subscription] = None
        self._stopping = asyncio.Event()

    @property
    def connections(self) -> list[PresenceConnection]:
        return list(self._connections.values())

    async def start(self) -> None:
        self._stopping.clear()
        self._tasks.append(asyncio.create_task(self._liveness_loop()))
        if self.fanout is not None:
            self._subscription = await self.fanout.subscribe(PRESENCE_TOPIC)
            self._tasks.append(asyncio.create_task(self._listen_fanout(self._subscription)))
        logger.info("Presence broadcaster started: instance=%s", self.instance_id)

    async def stop(self) -> None:
        self._stopping.set()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None

        self._connections.clear()
        await self.registry.close()
        await self._publish_change()
        logger.info("Presence broadcaster stopped: instance=%s", self.instance_id)

    async def connect(self, websocket: WebSocket, user: OnlineUser) -> PresenceConnection:
        """Accept an authenticated socket, register it and push the new snapshot."""
        await websocket.accept()
        conn = PresenceConnection(websocket, user)
        self._connections[conn.id] = conn
        try:
            await self.registry.add(conn.id, user)
            logger.info(
                "Presence connected: user=%s connections=%d", user.user_id, len(self._connections)
            )
            await self._changed()
        except BaseException:
            self._connections.pop(conn.id, None)
            await self._forget(conn.id)
            raise
        return conn

    async def disconnect(self, conn: PresenceConnection) -> None:
        """Deregister and push the new snapshot. Safe to call more than once."""
        if self._connections.pop(conn.id, None) is None:
            return
        await self.registry.remove(conn.id)
        logger.info("Presence disconnected: user=%s", conn.user.user_id)
        await self._changed()

    def mark_alive(self, conn: PresenceConnection) -> None:
        conn.alive = True

    async def snapshot(self) -> list[OnlineUser]:
        return compute_snapshot(await self.registry.members())

    async def broadcast(self) -> None:
        """Push the current snapshot to every local socket."""
        users = await self.snapshot()
        text = PresenceMessage(users=users).model_dump_json()
        failed = await self._send_all(text)
        if not failed:
            return

        for conn in failed:
            await self._drop(conn)
        # Survivors must not keep listing the reaped users
        text = PresenceMessage(users=await self.snapshot()).model_dump_json()
        for conn in await self._send_all(text):
            await self._drop(conn)
        await self._publish_change()

    async def check_liveness(self) -> None:
        """One liveness tick: reap silent sockets, ping the rest, push a snapshot."""
        silent = [c for c in self._connections.values() if not c.alive]
        for conn in silent:
            logger.info("Presence liveness check timed out: user=%s", conn.user.user_id)
            await self._drop(conn)

        for conn in self._connections.values():
            conn.alive = False
        for conn in await self._send_all(PING_FRAME):
            await self._drop(conn)

        await self.registry.refresh()
        await self.broadcast()
        if silent:
            await self._publish_change()

    # --- internals ---

    async def _send(self, conn: PresenceConnection, text: str) -> None:
        await asyncio.wait_for(conn.websocket.send_text(text), timeout=self.send_timeout)

    async def _send_all(self, text: str) -> list[PresenceConnection]:
        """Send to every local socket concurrently; return the ones that failed."""
        conns = list(self._connections.values())
        if not conns:
            return []
        results = await asyncio.gather(*(self._send(c, text) for c in conns), return_exceptions=True)
        failed = []
        for conn, result in zip(conns, results):
            if isinstance(result, Exception):
                logger.info("Presence send failed: user=%s error=%r", conn.user.user_id, result)
                failed.append(conn)
        return failed

    async def _drop(self, conn: PresenceConnection) -> None:
        """Remove a socket without broadcasting and close it."""
        if self._connections.pop(conn.id, None) is None:
            return
        await self.registry.remove(conn.id)
        try:
            await conn.websocket.close(code=1001)
        except Exception as exc:
            logger.debug("Presence close failed: user=%s error=%r", conn.user.user_id, exc)

    async def _forget(self, connection_id: str) -> None:
        """Best-effort registry removal after a failed connect."""
        try:
            await self.registry.remove(connection_id)
        except Exception:
            logger.warning("Presence registry cleanup failed: conn=%s", connection_id, exc_info=True)

    async def _changed(self) -> None:
        await self.broadcast()
        await self._publish_change()

    async def _publish_change(self) -> None:
        if self.fanout is None:
            return
        try:
            await self.fanout.publish(PRESENCE_TOPIC, {"origin": self.instance_id})
        except Exception:
            logger.warning("Presence fan-out publish failed", exc_info=True)

    async def _liveness_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await self.check_liveness()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Presence liveness tick failed")

    async def _listen_fanout(self, subscription: Subscription) -> None:
        try:
            while not self._stopping.is_set():
                message = await subscription.get(timeout=1.0)
                if self._stopping.is_set():
                    break
                if message is None or message.get("origin") == self.instance_id:
                    continue
                try:
                    await self.broadcast()
                except Exception:
                    logger.exception("Presence rebroadcast failed")
        except asyncio.CancelledError:
            logger.info("Presence fan-out listener cancelled: instance=%s", self.instance_id)
            raise


def build_presence(settings, fanout: Optional[Fanout]) -> PresenceBroadcaster:
    instance_id = uuid.uuid4().hex
    if settings.presence_backend == "redis":
        registry: PresenceRegistry = RedisPresenceRegistry(
            instance_id, ttl_seconds=int(settings.presence_ping_interval_seconds * 3) + 1
        )
    else:
        registry = LocalPresenceRegistry()
    return PresenceBroadcaster(
        registry,
        fanout,
        ping_interval=settings.presence_ping_interval_seconds,
        send_timeout=settings.presence_send_timeout_seconds,
        instance_id=instance_id,
    )
