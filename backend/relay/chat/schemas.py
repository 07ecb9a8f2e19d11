"""Wire models for the relay WebSocket protocol.

Every frame in either direction is a JSON object ``{"event": ..., "data": ...}``.
Inbound payloads are parsed leniently by the engine (the transport is
untrusted); the models here describe what the relay itself produces.
"""
import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class InboundEvent(str, Enum):
    """Events a client may send."""
    JOIN = "join"
    MSG = "msg"
    TYPING = "typing"
    STOP_TYPING = "stop-typing"
    FILE_META = "file-meta"
    FILE_CHUNK = "file-chunk"
    FILE_DONE = "file-done"


class OutboundEvent(str, Enum):
    """Events the relay emits."""
    HISTORY = "history"
    MSG = "msg"
    MSG_ACK = "msg:ack"
    SYSTEM = "system"
    PRESENCE = "presence"
    TYPING = "typing"
    STOP_TYPING = "stop-typing"
    FILE_META = "file-meta"
    FILE_CHUNK = "file-chunk"
    FILE_DONE = "file-done"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_message_id() -> str:
    """Server-assigned id: millisecond timestamp plus a random suffix."""
    return f"{now_ms():x}-{uuid.uuid4().hex[:8]}"


class Message(BaseModel):
    """An accepted chat message.

    Attributes:
        id: Server-assigned unique id.
        clientId: Sender's correlation id for optimistic-send reconciliation.
            Only echoed back to the sender in ``msg:ack``.
        nick: Sender nickname at send time.
        text: Message body, already truncated to the configured cap.
        ts: Server timestamp in milliseconds since epoch.
    """
    model_config = {"frozen": True}

    id: str = Field(default_factory=new_message_id, description="Server-assigned id")
    clientId: Optional[str] = Field(default=None, description="Client correlation id")
    nick: str = Field(..., description="Sender nickname")
    text: str = Field(..., description="Message text")
    ts: int = Field(default_factory=now_ms, description="Server timestamp (ms)")

    def public(self) -> Dict[str, Any]:
        """Payload for everyone but the sender (no correlation id)."""
        return self.model_dump(exclude={"clientId"})

    def ack(self) -> Dict[str, Any]:
        """Payload for the sender's acknowledgement."""
        return self.model_dump()


class FileMeta(BaseModel):
    """Declared metadata of a file transfer, as relayed to receivers."""
    id: str
    name: str = ""
    size: int = 0
    type: str = "application/octet-stream"


def envelope(event: OutboundEvent, data: Any) -> Dict[str, Any]:
    """Wrap a payload in the wire envelope."""
    return {"event": event.value, "data": data}
