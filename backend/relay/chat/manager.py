"""WebSocket connection manager for the relay.

Accepts WebSockets, creates their :class:`ConnectionState`, and delivers
frames to one connection or to every member of a room.

Key features:
    - Per-connection state created on connect, released exactly once on
      disconnect (chat window, chunk budget, chunk reset timer, writer task)
    - Fan-out only enqueues on each target's bounded outbox; the target's own
      writer task does the transport send, so a slow reader never blocks the
      sender or the rest of the room
    - Send failures are logged by the writer; a dead connection's own receive
      loop runs its leave transition

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import logging
from typing import Any, Iterable, List, Optional

from .connection import ConnectionState
from .rate_limiter import ChunkBudget, RateLimiter
from .registry import RoomRegistry
from .schemas import OutboundEvent, envelope

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Owns live connections and delivers frames to them.

    Args:
        registry: Shared room/connection state.
        chat_limiter: Limiter whose windows are handed to new connections.
        chunk_limit: Chunk budget per reset interval.
        chunk_interval: Seconds between chunk budget resets.
        max_pending_frames: Outbox capacity per connection.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        chat_limiter: RateLimiter,
        chunk_limit: int,
        chunk_interval: float,
        max_pending_frames: int = 256,
    ) -> None:
        self.registry = registry
        self.chat_limiter = chat_limiter
        self.chunk_limit = chunk_limit
        self.chunk_interval = chunk_interval
        self.max_pending_frames = max_pending_frames

    async def connect(self, websocket: Any, accept: bool = True) -> ConnectionState:
        """Accept a WebSocket and register fresh per-connection state.

        Args:
            websocket: The transport. Accepted first when ``accept`` is true.
            accept: False for transports that are already open.

        Returns:
            The new ConnectionState, not yet in any room.
        """
        if accept:
            await websocket.accept()

        conn = ConnectionState(
            websocket=websocket,
            chat_window=self.chat_limiter.new_window(),
            chunks=ChunkBudget(self.chunk_limit),
        )
        conn.start_chunk_timer(self.chunk_interval)
        conn.start_writer(self.max_pending_frames)
        self.registry.add(conn)
        logger.info(f"[Manager] Connection {conn.id} opened ({len(self.registry.connections)} live)")
        return conn

    def release(self, conn: ConnectionState) -> bool:
        """Forget a connection and release its resources.

        Returns:
            True if this call released it, False if it was already released.
        """
        if not conn.close():
            return False
        self.registry.remove(conn)
        logger.info(f"[Manager] Connection {conn.id} released ({len(self.registry.connections)} live)")
        return True

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send(self, conn: ConnectionState, event: OutboundEvent, data: Any) -> bool:
        """Queue one frame for a single connection."""
        return await self._safe_send(conn, envelope(event, data))

    async def broadcast(
        self,
        event: OutboundEvent,
        data: Any,
        targets: Iterable[ConnectionState],
    ) -> None:
        """Queue one frame for every target.

        Targets are passed in rather than looked up so callers can use the
        membership they snapshotted together with the triggering mutation.
        Returns once the frame is queued; nothing here waits on a transport.
        """
        connections = list(targets)
        if not connections:
            return

        message = envelope(event, data)
        results = [await self._safe_send(conn, message) for conn in connections]

        failed = results.count(False)
        if failed:
            logger.debug(f"[Manager] {event.value} not queued for {failed} connection(s)")

    def room_targets(
        self, room: str, exclude: Optional[ConnectionState] = None
    ) -> List[ConnectionState]:
        """Current members of ``room``, optionally without ``exclude``."""
        return [c for c in self.registry.members(room) if c is not exclude]

    async def _safe_send(self, conn: ConnectionState, message: dict) -> bool:
        """Queue a message on a connection's outbox.

        Returns:
            True if queued, False if the connection is closed or its outbox
            is full.
        """
        return conn.enqueue(message)
