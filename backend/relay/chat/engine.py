"""Relay engine: validates inbound frames and routes them.

Each inbound frame ``{"event": name, "data": payload}`` is dispatched through a
handler table. Handlers never raise for client input: frames that are not
objects, name an unknown event, miss a room or carry empty text are dropped
with a DEBUG log line. The only client-visible rejections are advisory
``system`` notices (throttling, oversize file).

Protocol (in -> out):
    - join        -> history (joiner), system "<nick> joined" (others), presence (all)
    - msg         -> msg:ack (sender, with clientId), msg (others)
    - typing      -> typing {nick} (others)
    - stop-typing -> stop-typing {nick} (others)
    - file-meta   -> file-meta {from, meta} (others)
    - file-chunk  -> file-chunk {from, fileId, seq, chunk} (others)
    - file-done   -> file-done {from, fileId} (others)

Events addressed to a room other than the sender's current one are dropped,
so a connection can only ever reach the room it is in.
"""
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from relay.config import AppConfig, get_config

from .connection import ConnectionState
from .files import FILE_THROTTLE_NOTICE, FileTransferRelay, Verdict
from .manager import ConnectionManager
from .presence import PresenceTracker
from .rate_limiter import Clock, RateLimiter
from .registry import RoomRegistry
from .schemas import InboundEvent, Message, OutboundEvent
from .session import RoomSessionManager

logger = logging.getLogger(__name__)

THROTTLE_NOTICE = "You are sending messages too quickly. Slow down."

# Longest client correlation id echoed back in msg:ack
MAX_CLIENT_ID_LENGTH = 128

Handler = Callable[[ConnectionState, Dict[str, Any]], Awaitable[None]]


class RelayEngine:
    """Composes rate limiting, history, presence, sessions and file relay.

    One engine serves the whole process. Per-connection ordering comes from
    the caller: each connection's frames must be dispatched one at a time, in
    arrival order, and :meth:`disconnect` must run after the last dispatch.
    """

    def __init__(self, config: AppConfig, clock: Clock = time.monotonic) -> None:
        self.config = config
        chat = config.chat
        limits = config.rate_limit

        self.registry = RoomRegistry(chat.history_size)
        self.chat_limiter = RateLimiter(limits.chat_limit, limits.chat_window_seconds, clock)
        self.manager = ConnectionManager(
            self.registry,
            self.chat_limiter,
            chunk_limit=limits.chunk_limit,
            chunk_interval=limits.chunk_window_seconds,
            max_pending_frames=chat.max_pending_frames,
        )
        self.presence = PresenceTracker(self.registry)
        self.sessions = RoomSessionManager(self.manager, self.presence, chat.default_nick)
        self.files = FileTransferRelay(
            config.files.max_file_size,
            config.files.max_chunk_length,
            config.files.max_transfers,
        )

        self._handlers: Dict[str, Handler] = {
            InboundEvent.JOIN.value: self.on_join,
            InboundEvent.MSG.value: self.on_msg,
            InboundEvent.TYPING.value: self.on_typing,
            InboundEvent.STOP_TYPING.value: self.on_stop_typing,
            InboundEvent.FILE_META.value: self.on_file_meta,
            InboundEvent.FILE_CHUNK.value: self.on_file_chunk,
            InboundEvent.FILE_DONE.value: self.on_file_done,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self, websocket: Any, accept: bool = True) -> ConnectionState:
        return await self.manager.connect(websocket, accept=accept)

    async def disconnect(self, conn: ConnectionState) -> bool:
        """Run the leave transition once; later calls are no-ops."""
        return await self.sessions.leave(conn)

    async def dispatch(self, conn: ConnectionState, frame: Any) -> None:
        """Validate the envelope and run the matching handler."""
        if conn.closed:
            return
        if not isinstance(frame, dict):
            logger.debug(f"[Engine] Dropped non-object frame from {conn.id}")
            return

        event = frame.get("event")
        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            logger.debug(f"[Engine] Dropped unknown event {event!r} from {conn.id}")
            return

        data = frame.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            logger.debug(f"[Engine] Dropped {event} with non-object payload from {conn.id}")
            return

        await handler(conn, data)

    # =========================================================================
    # Input cleaning
    # =========================================================================

    def _clean_room(self, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        room = value.strip()
        if not room or len(room) > self.config.chat.max_room_length:
            return None
        return room

    def _clean_nick(self, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return value.strip()[: self.config.chat.max_nick_length] or None

    def _resolve_room(self, conn: ConnectionState, data: Dict[str, Any]) -> Optional[str]:
        """Payload room if given, else the joined room; must be the joined room."""
        explicit = data.get("room")
        room = conn.room if explicit in (None, "") else self._clean_room(explicit)
        if room is None or room != conn.room:
            return None
        return room

    # =========================================================================
    # Handlers
    # =========================================================================

    async def on_join(self, conn: ConnectionState, data: Dict[str, Any]) -> None:
        room = self._clean_room(data.get("room"))
        if room is None:
            logger.debug(f"[Engine] join without a valid room from {conn.id}")
            return
        await self.sessions.join(conn, room, self._clean_nick(data.get("nick")))

    async def on_msg(self, conn: ConnectionState, data: Dict[str, Any]) -> None:
        room = self._resolve_room(conn, data)
        text = data.get("text")
        if isinstance(text, (int, float)) and not isinstance(text, bool):
            text = str(text)
        if room is None or not isinstance(text, str):
            return
        text = text[: self.config.chat.max_text_length]
        if not text.strip():
            return

        if not self.chat_limiter.allow(conn.chat_window):
            logger.info(f"[Engine] Throttled {conn.id} in room {room} ({conn.chat_window.count} in window)")
            await self.manager.send(conn, OutboundEvent.SYSTEM, THROTTLE_NOTICE)
            return

        client_id = data.get("clientId")
        if not isinstance(client_id, str) or len(client_id) > MAX_CLIENT_ID_LENGTH:
            client_id = None

        message = Message(
            clientId=client_id,
            nick=conn.nick or self.config.chat.default_nick,
            text=text,
        )
        self.registry.record(room, message)
        others = self.manager.room_targets(room, exclude=conn)

        await self.manager.send(conn, OutboundEvent.MSG_ACK, message.ack())
        await self.manager.broadcast(OutboundEvent.MSG, message.public(), others)

    async def on_typing(self, conn: ConnectionState, data: Dict[str, Any]) -> None:
        await self._relay_typing(conn, data, OutboundEvent.TYPING)

    async def on_stop_typing(self, conn: ConnectionState, data: Dict[str, Any]) -> None:
        await self._relay_typing(conn, data, OutboundEvent.STOP_TYPING)

    async def _relay_typing(
        self, conn: ConnectionState, data: Dict[str, Any], event: OutboundEvent
    ) -> None:
        room = self._resolve_room(conn, data)
        if room is None:
            return
        await self.manager.broadcast(
            event, {"nick": conn.nick}, self.manager.room_targets(room, exclude=conn)
        )

    async def on_file_meta(self, conn: ConnectionState, data: Dict[str, Any]) -> None:
        room = self._resolve_room(conn, data)
        if room is None:
            return
        verdict, payload = self.files.meta(conn, data)
        if verdict is Verdict.REJECT:
            await self.manager.send(conn, OutboundEvent.SYSTEM, self.files.too_large_notice)
        elif verdict is Verdict.RELAY:
            await self._relay_file(conn, room, OutboundEvent.FILE_META, payload)

    async def on_file_chunk(self, conn: ConnectionState, data: Dict[str, Any]) -> None:
        room = self._resolve_room(conn, data)
        if room is None:
            return
        verdict, payload = self.files.chunk(conn, data)
        if verdict is Verdict.REJECT:
            await self.manager.send(conn, OutboundEvent.SYSTEM, FILE_THROTTLE_NOTICE)
        elif verdict is Verdict.RELAY:
            await self._relay_file(conn, room, OutboundEvent.FILE_CHUNK, payload)

    async def on_file_done(self, conn: ConnectionState, data: Dict[str, Any]) -> None:
        room = self._resolve_room(conn, data)
        if room is None:
            return
        verdict, payload = self.files.done(conn, data)
        if verdict is Verdict.RELAY:
            await self._relay_file(conn, room, OutboundEvent.FILE_DONE, payload)

    async def _relay_file(
        self, conn: ConnectionState, room: str, event: OutboundEvent, payload: Dict[str, Any]
    ) -> None:
        await self.manager.broadcast(event, payload, self.manager.room_targets(room, exclude=conn))


_engine: Optional[RelayEngine] = None


def get_engine() -> RelayEngine:
    """Process-wide engine shared by all WebSocket handlers."""
    global _engine
    if _engine is None:
        _engine = RelayEngine(get_config())
    return _engine


def set_engine(engine: Optional[RelayEngine]) -> None:
    global _engine
    _engine = engine
