"""Room session manager: join and leave transitions.

Per connection::

    Unjoined --join--> Joined(room, nick) --join--> Joined(room', nick')
        \\                    |
         +----disconnect-----+--> Disconnected

A join that names a different room first leaves the old one, so a connection
is never in two rooms. A join to the same room with another nickname is a
rename. Every transition snapshots history, membership and presence before its
first ``await`` and then delivers:

    - ``history`` to the joining connection alone (entering a room, non-empty)
    - ``system`` "<nick> joined" / "<nick> left" / rename notice to the others
    - ``presence`` to every member, the joiner included
"""
import logging
from typing import Optional

from .connection import ConnectionState
from .manager import ConnectionManager
from .presence import PresenceTracker
from .schemas import OutboundEvent

logger = logging.getLogger(__name__)


class RoomSessionManager:
    """Drives connection <-> room transitions and their notices."""

    def __init__(
        self,
        manager: ConnectionManager,
        presence: PresenceTracker,
        default_nick: str = "anon",
    ) -> None:
        self.manager = manager
        self.registry = manager.registry
        self.presence = presence
        self.default_nick = default_nick

    async def join(self, conn: ConnectionState, room: str, nick: Optional[str]) -> None:
        """(Re)join ``room`` as ``nick``; idempotent for an unchanged pair."""
        nick = nick or self.default_nick
        previous_room, previous_nick = conn.room, conn.nick

        if previous_room == room:
            if previous_nick == nick:
                logger.debug(f"[Session] {conn.id} re-joined {room} unchanged")
                await self.manager.send(conn, OutboundEvent.PRESENCE, self.presence.payload(room))
                return
            await self._rename(conn, room, previous_nick or self.default_nick, nick)
            return

        if previous_room is not None:
            await self._leave_room(conn, previous_room, previous_nick or self.default_nick)

        # Mutation and every read it implies happen before the first await.
        conn.nick = nick
        self.registry.move(conn, room)
        history = [m.public() for m in self.registry.replay(room)]
        others = self.manager.room_targets(room, exclude=conn)
        members = others + [conn]
        presence = self.presence.payload(room)

        logger.info(f"[Session] {nick} ({conn.id}) joined {room}; presence={presence['count']}")
        if history:
            await self.manager.send(conn, OutboundEvent.HISTORY, history)
        await self.manager.broadcast(OutboundEvent.SYSTEM, f"{nick} joined", others)
        await self.manager.broadcast(OutboundEvent.PRESENCE, presence, members)

    async def leave(self, conn: ConnectionState) -> bool:
        """Disconnect transition. Safe to call more than once.

        Returns:
            True if this call performed the leave.
        """
        room, nick = conn.room, conn.nick or self.default_nick
        if not self.manager.release(conn):
            return False
        if room is not None:
            await self._leave_room(conn, room, nick)
        return True

    async def _leave_room(self, conn: ConnectionState, room: str, nick: str) -> None:
        if conn.room == room:
            self.registry.move(conn, None)
        remaining = self.manager.room_targets(room)
        presence = self.presence.payload(room)

        logger.info(f"[Session] {nick} ({conn.id}) left {room}; presence={presence['count']}")
        await self.manager.broadcast(OutboundEvent.SYSTEM, f"{nick} left", remaining)
        await self.manager.broadcast(OutboundEvent.PRESENCE, presence, remaining)

    async def _rename(self, conn: ConnectionState, room: str, old: str, new: str) -> None:
        conn.nick = new
        others = self.manager.room_targets(room, exclude=conn)
        presence = self.presence.payload(room)

        logger.info(f"[Session] {old} is now {new} ({conn.id}) in {room}")
        await self.manager.broadcast(OutboundEvent.SYSTEM, f"{old} is now known as {new}", others)
        await self.manager.broadcast(OutboundEvent.PRESENCE, presence, others + [conn])
