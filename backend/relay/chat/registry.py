"""Room registry: the single owner of shared relay state.

Holds every live :class:`ConnectionState` and the per-room history. Room
membership is not stored separately; it is derived from each connection's
``room`` field, so there is nothing to drift out of sync.

All methods are synchronous. Under the single asyncio event loop that serves
the WebSockets, a method therefore runs to completion without interleaving
with another connection's handler, which makes each accessor atomic. Callers
that must read state consistently with a mutation (history replay and
presence after a join) take those reads before their first ``await``.
"""
from typing import Dict, List, Optional

from .connection import ConnectionState
from .history import HistoryBuffer
from .schemas import Message


class RoomRegistry:
    """Connection id -> state, plus room code -> history."""

    def __init__(self, history_size: int = 100) -> None:
        self.connections: Dict[str, ConnectionState] = {}
        self.history = HistoryBuffer(history_size)

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def add(self, conn: ConnectionState) -> None:
        self.connections[conn.id] = conn

    def remove(self, conn: ConnectionState) -> Optional[ConnectionState]:
        return self.connections.pop(conn.id, None)

    def get(self, connection_id: str) -> Optional[ConnectionState]:
        return self.connections.get(connection_id)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def move(self, conn: ConnectionState, room: Optional[str]) -> Optional[str]:
        """Put ``conn`` in ``room`` (or no room) and return the previous room."""
        previous = conn.room
        conn.room = room
        return previous

    def members(self, room: str) -> List[ConnectionState]:
        """Live connections whose current room is ``room``."""
        return [c for c in self.connections.values() if c.room == room]

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def record(self, room: str, message: Message) -> Message:
        return self.history.append(room, message)

    def replay(self, room: str) -> List[Message]:
        return self.history.snapshot(room)

    def reset(self) -> None:
        """Drop all state (tests and shutdown)."""
        for conn in list(self.connections.values()):
            conn.close()
        self.connections.clear()
        self.history = HistoryBuffer(self.history.capacity)
