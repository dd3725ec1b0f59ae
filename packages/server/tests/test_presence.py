"""
Presence broadcaster tests.

Tests cover:
- Snapshot ordering and de-duplication
- Connect/disconnect broadcasts and idempotent disconnect
- Isolation of failed and slow sends
- Ping/pong liveness reaping
- Fan-out between two broadcasters
- Redis registry bookkeeping
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from teamup.core.fanout import Fanout, LocalFanout
from teamup.core.presence import (
    PING_FRAME,
    REDIS_PRESENCE_INSTANCES_KEY,
    LocalPresenceRegistry,
    PresenceBroadcaster,
    PresenceRegistry,
    RedisPresenceRegistry,
    compute_snapshot,
)
from teamup_shared.schemas.common import RoleCategory
from teamup_shared.schemas.users import OnlineUser


def _user(user_id: str, name: str, role: RoleCategory = RoleCategory.RND) -> OnlineUser:
    return OnlineUser(user_id=user_id, name=name, identifier=f"{user_id}@example.com", role=role)


def _ws() -> AsyncMock:
    ws = AsyncMock()
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    ws.close = AsyncMock()
    return ws


def _last_users(ws: AsyncMock) -> list[str]:
    """Names in the most recent presence frame sent to ``ws``."""
    for call in reversed(ws.send_text.call_args_list):
        frame = json.loads(call.args[0])
        if frame["type"] == "presence":
            return [u["name"] for u in frame["users"]]
    raise AssertionError("no presence frame sent")


@pytest.fixture
def broadcaster():
    return PresenceBroadcaster(LocalPresenceRegistry(), ping_interval=3600, send_timeout=0.2)


class TestSnapshot:
    def test_sorted_by_display_name_then_id(self):
        users = [_user("3", "bob"), _user("1", "Alice"), _user("2", "alice"), _user("0", "Bob")]
        snapshot = compute_snapshot(users)
        assert [(u.name, u.user_id) for u in snapshot] == [
            ("Alice", "1"), ("alice", "2"), ("Bob", "0"), ("bob", "3"),
        ]

    def test_deduplicates_by_user(self):
        snapshot = compute_snapshot([_user("1", "Ann"), _user("1", "Ann"), _user("2", "Ben")])
        assert [u.user_id for u in snapshot] == ["1", "2"]

    def test_wire_format_is_snake_case(self):
        payload = _user("1", "Ann").model_dump()
        assert set(payload) == {"user_id", "name", "identifier", "role"}


class TestConnectDisconnect:
    async def test_connect_accepts_and_broadcasts(self, broadcaster):
        ws_a, ws_b = _ws(), _ws()
        await broadcaster.connect(ws_a, _user("a", "Ann"))
        await broadcaster.connect(ws_b, _user("b", "Ben"))

        ws_a.accept.assert_awaited_once()
        assert _last_users(ws_a) == ["Ann", "Ben"]
        assert _last_users(ws_b) == ["Ann", "Ben"]

    async def test_same_user_twice_listed_once(self, broadcaster):
        ws_1, ws_2 = _ws(), _ws()
        await broadcaster.connect(ws_1, _user("a", "Ann"))
        conn_2 = await broadcaster.connect(ws_2, _user("a", "Ann"))
        assert _last_users(ws_1) == ["Ann"]

        # Closing one tab keeps the user online
        await broadcaster.disconnect(conn_2)
        assert _last_users(ws_1) == ["Ann"]

    async def test_disconnect_broadcasts_and_is_idempotent(self, broadcaster):
        ws_a, ws_b = _ws(), _ws()
        conn_a = await broadcaster.connect(ws_a, _user("a", "Ann"))
        await broadcaster.connect(ws_b, _user("b", "Ben"))

        await broadcaster.disconnect(conn_a)
        assert _last_users(ws_b) == ["Ben"]
        sent = ws_b.send_text.await_count

        await broadcaster.disconnect(conn_a)
        assert ws_b.send_text.await_count == sent
        assert len(broadcaster.connections) == 1


class TestFailureIsolation:
    async def test_failed_send_is_reaped(self, broadcaster):
        healthy, broken = _ws(), _ws()
        await broadcaster.connect(healthy, _user("a", "Ann"))
        await broadcaster.connect(broken, _user("b", "Ben"))

        broken.send_text.side_effect = RuntimeError("socket gone")
        await broadcaster.broadcast()

        assert [c.user.user_id for c in broadcaster.connections] == ["a"]
        assert _last_users(healthy) == ["Ann"]
        broken.close.assert_awaited()

    async def test_slow_send_times_out_without_blocking_others(self, broadcaster):
        fast, slow = _ws(), _ws()
        await broadcaster.connect(fast, _user("a", "Ann"))
        await broadcaster.connect(slow, _user("b", "Ben"))

        async def hang(_text):
            await asyncio.sleep(10)

        slow.send_text.side_effect = hang
        await asyncio.wait_for(broadcaster.broadcast(), timeout=2)

        assert [c.user.user_id for c in broadcaster.connections] == ["a"]
        assert _last_users(fast) == ["Ann"]


class TestLiveness:
    async def test_liveness_check_pings_then_reaps_silent_socket(self, broadcaster):
        responsive, silent = _ws(), _ws()
        conn_r = await broadcaster.connect(responsive, _user("a", "Ann"))
        await broadcaster.connect(silent, _user("b", "Ben"))

        await broadcaster.check_liveness()
        sent = [c.args[0] for c in silent.send_text.call_args_list]
        assert PING_FRAME in sent
        assert len(broadcaster.connections) == 2

        # Only one answers before the next tick
        broadcaster.mark_alive(conn_r)
        await broadcaster.check_liveness()

        assert [c.user.user_id for c in broadcaster.connections] == ["a"]
        assert _last_users(responsive) == ["Ann"]

    async def test_liveness_loop_reaps_within_interval(self):
        broadcaster = PresenceBroadcaster(LocalPresenceRegistry(), ping_interval=0.05)
        await broadcaster.start()
        try:
            await broadcaster.connect(_ws(), _user("b", "Ben"))
            await asyncio.sleep(0.3)
            assert broadcaster.connections == []
        finally:
            await broadcaster.stop()

    async def test_stop_cancels_background_tasks(self):
        fanout = LocalFanout()
        broadcaster = PresenceBroadcaster(LocalPresenceRegistry(), fanout, ping_interval=3600)
        await broadcaster.start()
        assert fanout.subscriber_count("presence") == 1

        await broadcaster.stop()
        assert fanout.subscriber_count("presence") == 0


class TestFanout:
    async def test_change_on_one_instance_reaches_the_other(self):
        fanout = LocalFanout()
        registry = LocalPresenceRegistry()  # shared, like the Redis registry
        first = PresenceBroadcaster(registry, fanout, ping_interval=3600, instance_id="one")
        second = PresenceBroadcaster(registry, fanout, ping_interval=3600, instance_id="two")
        await first.start()
        await second.start()
        try:
            viewer = _ws()
            await second.connect(viewer, _user("b", "Ben"))
            await first.connect(_ws(), _user("a", "Ann"))

            for _ in range(50):
                if _last_users(viewer) == ["Ann", "Ben"]:
                    break
                await asyncio.sleep(0.02)
            assert _last_users(viewer) == ["Ann", "Ben"]
        finally:
            await first.stop()
            await second.stop()


class TestRedisRegistry:
    async def test_add_writes_instance_hash_with_ttl(self):
        client = AsyncMock()
        pipe = AsyncMock()
        calls = []
        pipe.hset = lambda *a: calls.append(("hset", a))
        pipe.expire = lambda *a: calls.append(("expire", a))
        pipe.sadd = lambda *a: calls.append(("sadd", a))
        client.pipeline = lambda: _AsyncContext(pipe)

        registry = RedisPresenceRegistry("inst1", ttl_seconds=91, client=client)
        await registry.add("c1", _user("a", "Ann"))

        assert calls[0][0] == "hset"
        assert calls[0][1][:2] == ("teamup:presence:instance:inst1", "c1")
        assert calls[1] == ("expire", ("teamup:presence:instance:inst1", 91))
        assert calls[2] == ("sadd", (REDIS_PRESENCE_INSTANCES_KEY, "inst1"))
        pipe.execute.assert_awaited_once()

    async def test_members_skips_and_forgets_expired_instances(self):
        client = AsyncMock()
        client.smembers.return_value = {"inst1", "dead"}
        pipe = AsyncMock()
        pipe.hvals = lambda key: None
        # sorted(): "dead" first, then "inst1"
        pipe.execute.return_value = [[], [_user("a", "Ann").model_dump_json()]]
        client.pipeline = lambda: _AsyncContext(pipe)

        registry = RedisPresenceRegistry("inst1", ttl_seconds=91, client=client)
        users = await registry.members()

        assert [u.user_id for u in users] == ["a"]
        client.srem.assert_awaited_once_with(REDIS_PRESENCE_INSTANCES_KEY, "dead")


class _AsyncContext:
    def __init__(self, value):
        self.value = value

    async def __aenter__(self):
        return self.value

    async def __aexit__(self, *exc):
        return False


class _FailingRegistry(LocalPresenceRegistry):
    async def add(self, connection_id, user):
        raise ConnectionError("redis down")


class TestCleanup:
    async def test_failed_registration_leaves_no_connection(self):
        broadcaster = PresenceBroadcaster(_FailingRegistry(), ping_interval=3600)

        with pytest.raises(ConnectionError):
            await broadcaster.connect(_ws(), _user("a", "Ann"))

        assert broadcaster.connections == []
        assert await broadcaster.registry.members() == []

    async def test_failed_first_broadcast_leaves_no_connection(self, broadcaster, monkeypatch):
        monkeypatch.setattr(
            broadcaster.registry, "members", AsyncMock(side_effect=ConnectionError("redis down"))
        )

        with pytest.raises(ConnectionError):
            await broadcaster.connect(_ws(), _user("a", "Ann"))

        assert broadcaster.connections == []

    async def test_stop_with_pending_fanout_message_returns(self):
        fanout = LocalFanout()
        broadcaster = PresenceBroadcaster(LocalPresenceRegistry(), fanout, ping_interval=3600)
        await broadcaster.start()

        await fanout.publish("presence", {"origin": "two"})
        await asyncio.wait_for(broadcaster.stop(), timeout=3)

        assert fanout.subscriber_count("presence") == 0

    async def test_stop_right_after_a_burst_of_messages(self):
        fanout = LocalFanout()
        broadcaster = PresenceBroadcaster(LocalPresenceRegistry(), fanout, ping_interval=3600)
        await broadcaster.start()
        await asyncio.sleep(0)

        for _ in range(20):
            await fanout.publish("presence", {"origin": "two"})
        await asyncio.sleep(0)
        await asyncio.wait_for(broadcaster.stop(), timeout=3)


class TestBackendInterfaces:
    def test_incomplete_registry_is_rejected_at_construction(self):
        class AddOnly(PresenceRegistry):
            async def add(self, connection_id, user):
                pass

        with pytest.raises(TypeError):
            AddOnly()

    def test_incomplete_fanout_is_rejected_at_construction(self):
        class PublishOnly(Fanout):
            async def publish(self, topic, message):
                pass

        with pytest.raises(TypeError):
            PublishOnly()
