"""File transfer relay.

The relay forwards three kinds of frames for a transfer: ``file-meta``,
``file-chunk`` and ``file-done``. It never reassembles or decodes chunks. It
only enforces:

    - a declared-size ceiling on ``file-meta``
    - the presence of a transfer id and numeric sequence number
    - a per-connection chunk budget (see :class:`~.rate_limiter.ChunkBudget`)

Receivers are responsible for ordering chunks and detecting gaps. The relay
keeps a small per-connection record of what it has forwarded so completion can
be logged with a chunk count. At most ``max_transfers`` records are kept per
connection; a new transfer past that forgets the oldest unfinished one.
"""
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from .schemas import FileMeta

if TYPE_CHECKING:
    from .connection import ConnectionState

logger = logging.getLogger(__name__)

FILE_TOO_LARGE_NOTICE = "File too large (max {limit} MB)."
FILE_THROTTLE_NOTICE = "File transfer throttled. Slow down."


class Verdict(str, Enum):
    """Outcome of validating one file frame."""
    RELAY = "relay"
    DROP = "drop"
    REJECT = "reject"  # drop and notify the sender


@dataclass
class FileTransfer:
    """What the relay has forwarded for one client-chosen transfer id."""
    meta: Optional[FileMeta] = None
    chunks: int = 0


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, int)


def _transfer_id(value: Any) -> Optional[str]:
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
        return str(value)
    return None


class FileTransferRelay:
    """Validates file frames and builds the payload to fan out."""

    def __init__(self, max_file_size: int, max_chunk_length: int, max_transfers: int = 16) -> None:
        self.max_file_size = max_file_size
        self.max_chunk_length = max_chunk_length
        self.max_transfers = max_transfers

    @property
    def too_large_notice(self) -> str:
        return FILE_TOO_LARGE_NOTICE.format(limit=self.max_file_size // (1024 * 1024))

    def meta(
        self, conn: "ConnectionState", data: Dict[str, Any]
    ) -> Tuple[Verdict, Optional[Dict[str, Any]]]:
        """Validate a ``file-meta`` frame.

        Returns:
            ``(RELAY, payload)`` to forward, ``(REJECT, None)`` for an oversize
            declaration, ``(DROP, None)`` for a malformed one.
        """
        raw = data.get("meta")
        if not isinstance(raw, dict):
            return Verdict.DROP, None

        transfer_id = _transfer_id(raw.get("id"))
        size = raw.get("size")
        if transfer_id is None or not _is_number(size) or size < 0:
            return Verdict.DROP, None

        if size > self.max_file_size:
            logger.info(
                f"[Files] Rejected transfer {transfer_id} from {conn.id}: "
                f"{size} bytes exceeds {self.max_file_size}"
            )
            return Verdict.REJECT, None

        meta = FileMeta(
            id=transfer_id,
            name=str(raw.get("name") or ""),
            size=int(size),
            type=str(raw.get("type") or "application/octet-stream"),
        )
        self._track(conn, transfer_id).meta = meta
        return Verdict.RELAY, {"from": conn.nick, "meta": meta.model_dump()}

    def chunk(
        self, conn: "ConnectionState", data: Dict[str, Any]
    ) -> Tuple[Verdict, Optional[Dict[str, Any]]]:
        """Validate a ``file-chunk`` frame and charge the chunk budget.

        Returns ``(REJECT, None)`` only for the first over-budget chunk of a
        window; later ones in the same window are plain drops.
        """
        transfer_id = _transfer_id(data.get("fileId"))
        seq = data.get("seq")
        chunk = data.get("chunk")
        if transfer_id is None or not _is_number(seq):
            return Verdict.DROP, None
        if not isinstance(chunk, str) or not chunk or len(chunk) > self.max_chunk_length:
            return Verdict.DROP, None

        allowed, notify = conn.chunks.consume()
        if not allowed:
            if notify:
                logger.info(f"[Files] Chunk budget exceeded by {conn.id} in room {conn.room}")
                return Verdict.REJECT, None
            return Verdict.DROP, None

        self._track(conn, transfer_id).chunks += 1
        return Verdict.RELAY, {
            "from": conn.nick,
            "fileId": transfer_id,
            "seq": seq,
            "chunk": chunk,
        }

    def done(
        self, conn: "ConnectionState", data: Dict[str, Any]
    ) -> Tuple[Verdict, Optional[Dict[str, Any]]]:
        """End-of-stream marker; relayed whenever it names a transfer."""
        transfer_id = _transfer_id(data.get("fileId"))
        if transfer_id is None:
            return Verdict.DROP, None

        transfer = conn.transfers.pop(transfer_id, None)
        relayed = transfer.chunks if transfer else 0
        logger.info(f"[Files] Transfer {transfer_id} from {conn.id} done ({relayed} chunks relayed)")
        return Verdict.RELAY, {"from": conn.nick, "fileId": transfer_id}

    def _track(self, conn: "ConnectionState", transfer_id: str) -> FileTransfer:
        """Record for ``transfer_id``; past ``max_transfers`` the oldest is forgotten."""
        transfer = conn.transfers.get(transfer_id)
        if transfer is not None:
            return transfer
        while len(conn.transfers) >= self.max_transfers:
            stale = next(iter(conn.transfers))
            del conn.transfers[stale]
            logger.debug(f"[Files] Forgot unfinished transfer {stale} from {conn.id}")
        transfer = conn.transfers[transfer_id] = FileTransfer()
        return transfer
