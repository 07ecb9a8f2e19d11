"""Tests for the room registry, presence counting and connection state."""
import asyncio

import pytest

from relay.chat.connection import ConnectionState
from relay.chat.presence import PresenceTracker
from relay.chat.rate_limiter import ChunkBudget, RateWindow
from relay.chat.registry import RoomRegistry

from conftest import FakeWebSocket


def _conn(room=None) -> ConnectionState:
    return ConnectionState(
        websocket=FakeWebSocket(),
        chat_window=RateWindow(started_at=0.0),
        chunks=ChunkBudget(limit=10),
        room=room,
    )


class TestRoomRegistry:

    def test_members_derived_from_connection_room(self):
        registry = RoomRegistry()
        a, b, c = _conn("r1"), _conn("r1"), _conn("r2")
        for conn in (a, b, c):
            registry.add(conn)

        assert set(registry.members("r1")) == {a, b}
        assert registry.members("r2") == [c]

    def test_move_returns_previous_room(self):
        registry = RoomRegistry()
        conn = _conn()
        registry.add(conn)

        assert registry.move(conn, "r1") is None
        assert registry.move(conn, "r2") == "r1"
        assert registry.members("r1") == []
        assert registry.members("r2") == [conn]

    def test_removed_connection_is_not_a_member(self):
        registry = RoomRegistry()
        conn = _conn("r1")
        registry.add(conn)
        registry.remove(conn)

        assert registry.members("r1") == []
        assert registry.get(conn.id) is None

    def test_history_capacity_comes_from_registry(self):
        from relay.chat.schemas import Message

        registry = RoomRegistry(history_size=2)
        for i in range(3):
            registry.record("r", Message(nick="n", text=str(i)))
        assert [m.text for m in registry.replay("r")] == ["1", "2"]


class TestPresenceTracker:

    def test_counts_live_members(self):
        registry = RoomRegistry()
        presence = PresenceTracker(registry)
        a, b = _conn("r1"), _conn("r1")
        registry.add(a)
        registry.add(b)
        registry.add(_conn("r2"))

        assert presence.snapshot("r1") == 2
        assert presence.payload("r2") == {"count": 1}
        assert presence.snapshot("empty") == 0

    def test_tracks_mutation_without_cached_counter(self):
        registry = RoomRegistry()
        presence = PresenceTracker(registry)
        conn = _conn("r1")
        registry.add(conn)
        assert presence.snapshot("r1") == 1

        registry.move(conn, "r2")
        assert presence.snapshot("r1") == 0
        assert presence.snapshot("r2") == 1


class TestConnectionState:

    def test_close_is_idempotent(self):
        conn = _conn()
        assert conn.close() is True
        assert conn.close() is False
        assert conn.closed

    @pytest.mark.asyncio
    async def test_chunk_timer_resets_budget(self):
        conn = _conn()
        conn.chunks.consume()
        conn.chunks.consume()
        conn.start_chunk_timer(0.01)

        await asyncio.sleep(0.05)
        assert conn.chunks.count == 0
        conn.close()

    @pytest.mark.asyncio
    async def test_close_cancels_chunk_timer(self):
        conn = _conn()
        conn.start_chunk_timer(10)
        timer = conn._chunk_timer
        assert timer is not None and not timer.done()

        conn.close()
        await asyncio.sleep(0.01)
        assert timer.cancelled()
        assert conn._chunk_timer is None

    @pytest.mark.asyncio
    async def test_timer_not_started_after_close(self):
        conn = _conn()
        conn.close()
        conn.start_chunk_timer(1)
        assert conn._chunk_timer is None

    @pytest.mark.asyncio
    async def test_writer_delivers_frames_in_order(self):
        conn = _conn()
        conn.start_writer(8)
        for i in range(3):
            assert conn.enqueue({"n": i}) is True

        await conn.flush()
        assert conn.websocket.sent == [{"n": 0}, {"n": 1}, {"n": 2}]
        conn.close()

    def test_enqueue_without_writer_is_refused(self):
        conn = _conn()
        assert conn.enqueue({"n": 1}) is False

    @pytest.mark.asyncio
    async def test_close_cancels_writer_and_refuses_frames(self):
        conn = _conn()
        conn.start_writer(4)
        writer = conn._writer

        conn.close()
        assert conn.enqueue({"n": 1}) is False
        await asyncio.sleep(0.01)
        assert writer.cancelled()
        assert conn._writer is None
