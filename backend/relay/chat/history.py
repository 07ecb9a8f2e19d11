"""Bounded per-room message history.

Each room keeps the most recent ``capacity`` messages, newest at the tail.
Appending past capacity evicts strictly from the head (FIFO). The buffer is
replayed once to every connection that enters the room.
"""
from collections import deque
from typing import Deque, Dict, List

from .schemas import Message


class HistoryBuffer:
    """Room code -> bounded deque of :class:`Message`."""

    def __init__(self, capacity: int = 100) -> None:
        self.capacity = capacity
        self._rooms: Dict[str, Deque[Message]] = {}

    def append(self, room: str, message: Message) -> Message:
        """Insert at the tail; the deque drops the oldest entry on overflow."""
        buffer = self._rooms.get(room)
        if buffer is None:
            buffer = self._rooms[room] = deque(maxlen=self.capacity)
        buffer.append(message)
        return message

    def snapshot(self, room: str) -> List[Message]:
        """Current contents, oldest first, as an independent list."""
        return list(self._rooms.get(room, ()))
