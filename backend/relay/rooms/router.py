"""Room code REST API router.

Endpoints:
    GET /create-room - Mint a fresh 6-character room code
"""
import logging
import secrets
import string
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from relay.chat.rate_limiter import KeyedRateLimiter
from relay.config import get_config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = string.digits + string.ascii_lowercase

TOO_MANY_ROOMS = "Too many rooms created from this IP, try later."

_limiter: Optional[KeyedRateLimiter] = None


def get_room_limiter() -> KeyedRateLimiter:
    """Per-address limiter for room creation, built from config on first use."""
    global _limiter
    if _limiter is None:
        limits = get_config().rate_limit
        _limiter = KeyedRateLimiter(limits.create_room_limit, limits.create_room_window_seconds)
    return _limiter


def reset_room_limiter() -> None:
    """Forget all per-address windows (for testing)."""
    global _limiter
    _limiter = None


def new_room_code() -> str:
    """Random base36 room code."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.get("/create-room")
async def create_room(request: Request) -> JSONResponse:
    """Create a room code.

    Rooms exist implicitly once someone joins, so this only hands out a code.

    Returns:
        ``{"room": "<code>"}``, or HTTP 429 with ``{"error": ...}`` when the
        caller's address exceeded its hourly budget.
    """
    address = _client_address(request)
    if not get_room_limiter().allow(address):
        logger.info(f"Room creation throttled for {address}")
        return JSONResponse({"error": TOO_MANY_ROOMS}, status_code=429)

    code = new_room_code()
    logger.info(f"Created room code {code} for {address}")
    return JSONResponse({"room": code})
