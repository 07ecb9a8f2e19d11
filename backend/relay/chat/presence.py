"""Presence: live member count per room, computed from membership."""
from .registry import RoomRegistry


class PresenceTracker:
    """Counts the connections currently joined to a room.

    There is no cached counter; every snapshot walks the registry so the count
    always equals the number of live connections whose room is ``room``.
    """

    def __init__(self, registry: RoomRegistry) -> None:
        self._registry = registry

    def snapshot(self, room: str) -> int:
        return len(self._registry.members(room))

    def payload(self, room: str) -> dict:
        return {"count": self.snapshot(room)}
