"""Shared test fixtures and configuration for backend tests."""
from typing import Any, List, Optional

import pytest
from fastapi.testclient import TestClient

from relay.chat.engine import RelayEngine, set_engine
from relay.config import AppConfig, set_config
from relay.main import app
from relay.rooms.router import reset_room_limiter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebSocket:
    """Records frames the relay sends; stands in for a live transport."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[dict] = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)

    def events(self, name: Optional[str] = None) -> List[Any]:
        """Payloads of sent frames, optionally only those named ``name``."""
        return [m["data"] for m in self.sent if name is None or m["event"] == name]

    def names(self) -> List[str]:
        return [m["event"] for m in self.sent]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return AppConfig()


@pytest.fixture
def engine(config, clock):
    """A fresh engine with a controllable clock."""
    return RelayEngine(config, clock=clock)


@pytest.fixture(autouse=True)
def fresh_process_state():
    """Give every test its own process-wide config, engine and room limiter."""
    set_config(AppConfig())
    set_engine(RelayEngine(AppConfig()))
    reset_room_limiter()
    yield
    set_engine(None)
    reset_room_limiter()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)
