"""Per-connection state.

A :class:`ConnectionState` is created when a WebSocket is accepted and closed
exactly once when it goes away. It owns the chat rate window, the chunk budget,
the recurring task that resets that budget, and the outbox drained by its own
writer task, so closing it releases every per-connection resource.

Frames for a connection are never written by the handler that produced them.
They are put on the connection's bounded outbox and written by its writer task,
so a client that stops reading only ever stalls itself.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .files import FileTransfer
from .rate_limiter import ChunkBudget, RateWindow

logger = logging.getLogger(__name__)


def new_connection_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class ConnectionState:
    """Everything the relay knows about one live client.

    Attributes:
        websocket: Transport handle; anything with ``async send_json(dict)``.
        chat_window: Fixed-reset window for chat messages.
        chunks: File-chunk budget, reset by ``_chunk_timer``.
        id: Process-unique connection id.
        room: Joined room code, ``None`` until the first join.
        nick: Nickname, ``None`` until the first join.
        transfers: File transfers this connection has in flight, oldest first.
        outbox: Frames waiting for the writer task.
        dropped_frames: Frames discarded because the outbox was full.
    """
    websocket: Any
    chat_window: RateWindow
    chunks: ChunkBudget
    id: str = field(default_factory=new_connection_id)
    room: Optional[str] = None
    nick: Optional[str] = None
    transfers: Dict[str, FileTransfer] = field(default_factory=dict)
    outbox: Optional[asyncio.Queue] = field(default=None, repr=False)
    dropped_frames: int = 0
    closed: bool = False
    _chunk_timer: Optional[asyncio.Task] = field(default=None, repr=False)
    _writer: Optional[asyncio.Task] = field(default=None, repr=False)

    # -------------------------------------------------------------------------
    # Chunk budget
    # -------------------------------------------------------------------------

    def start_chunk_timer(self, interval: float) -> None:
        """Start resetting the chunk budget every ``interval`` seconds.

        Must be called from inside the event loop that serves this connection.
        """
        if self._chunk_timer is None and not self.closed:
            self._chunk_timer = asyncio.create_task(self._reset_chunks(interval))

    async def _reset_chunks(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.chunks.reset()

    # -------------------------------------------------------------------------
    # Outbound frames
    # -------------------------------------------------------------------------

    def start_writer(self, max_pending: int) -> None:
        """Create the outbox and the task that writes it to the transport.

        Must be called from inside the event loop that serves this connection.
        """
        if self._writer is None and not self.closed:
            self.outbox = asyncio.Queue(maxsize=max_pending)
            self._writer = asyncio.create_task(self._write_frames())

    def enqueue(self, message: dict) -> bool:
        """Queue a frame without waiting for the transport.

        Returns:
            False if the connection is closed, has no writer, or its outbox
            is full (the frame is dropped).
        """
        if self.closed or self.outbox is None:
            return False
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped_frames += 1
            if self.dropped_frames == 1 or self.dropped_frames % 100 == 0:
                logger.warning(
                    f"[Conn] Outbox full for {self.id}; dropped {self.dropped_frames} frame(s)"
                )
            return False
        return True

    async def _write_frames(self) -> None:
        while True:
            message = await self.outbox.get()
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Failed to send to connection {self.id}: {e}")
            finally:
                self.outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        if self.outbox is not None and not self.closed:
            await self.outbox.join()

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def close(self) -> bool:
        """Release timers, the writer and transfer records.

        Frames still in the outbox are discarded.

        Returns:
            True the first time, False on every later call.
        """
        if self.closed:
            return False
        self.closed = True
        for task in (self._chunk_timer, self._writer):
            if task is not None:
                task.cancel()
        self._chunk_timer = None
        self._writer = None
        self.transfers.clear()
        return True
