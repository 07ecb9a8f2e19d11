"""End-to-end tests for the /ws relay endpoint."""
import pytest
from fastapi.testclient import TestClient

from relay.chat.engine import THROTTLE_NOTICE, get_engine
from relay.main import app


@pytest.fixture
def client():
    """A started client; every socket in a test shares its event loop."""
    with TestClient(app) as test_client:
        yield test_client


def send(ws, event, data=None):
    ws.send_json({"event": event, "data": data or {}})


def receive(ws, event):
    """Receive the next frame and check its event name."""
    frame = ws.receive_json()
    assert frame["event"] == event, frame
    return frame["data"]


def join(ws, room, nick):
    send(ws, "join", {"room": room, "nick": nick})


def test_two_clients_join_and_chat(client):
    room = "abcxyz"

    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        join(ws1, room, "Neo")
        assert receive(ws1, "presence") == {"count": 1}

        join(ws2, room, "Trinity")
        assert receive(ws2, "presence") == {"count": 2}
        assert receive(ws1, "system") == "Trinity joined"
        assert receive(ws1, "presence") == {"count": 2}

        send(ws1, "msg", {"room": room, "text": "hi", "clientId": "c-1"})
        ack = receive(ws1, "msg:ack")
        assert ack["clientId"] == "c-1"
        assert ack["nick"] == "Neo"

        relayed = receive(ws2, "msg")
        assert relayed["text"] == "hi"
        assert relayed["id"] == ack["id"]
        assert "clientId" not in relayed

        send(ws2, "typing", {"room": room})
        assert receive(ws1, "typing") == {"nick": "Trinity"}


def test_history_replayed_to_late_joiner(client):
    room = "hist01"

    with client.websocket_connect("/ws") as ws1:
        join(ws1, room, "Neo")
        receive(ws1, "presence")
        for text in ("First message", "Second message"):
            send(ws1, "msg", {"text": text})
            receive(ws1, "msg:ack")

        with client.websocket_connect("/ws") as ws2:
            join(ws2, room, "Trinity")
            history = receive(ws2, "history")
            assert [m["text"] for m in history] == ["First message", "Second message"]
            assert receive(ws2, "presence") == {"count": 2}


def test_burst_of_thirteen_is_throttled(client):
    room = "burst1"

    with client.websocket_connect("/ws") as ws:
        join(ws, room, "Neo")
        receive(ws, "presence")

        for i in range(13):
            send(ws, "msg", {"text": f"m{i}", "clientId": f"c-{i}"})

        frames = [ws.receive_json() for _ in range(13)]
        acks = [f for f in frames if f["event"] == "msg:ack"]
        notices = [f["data"] for f in frames if f["event"] == "system"]
        assert [a["data"]["clientId"] for a in acks] == [f"c-{i}" for i in range(12)]
        assert notices == [THROTTLE_NOTICE]

    assert len(get_engine().registry.replay(room)) == 12


def test_garbage_frames_do_not_close_connection(client):
    room = "junk01"

    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        ws.send_bytes(b"\x00\x01")
        ws.send_json(["msg", "hi"])
        send(ws, "bogus")
        join(ws, room, "Neo")
        assert receive(ws, "presence") == {"count": 1}


def test_disconnect_releases_connection_state(client):
    with client.websocket_connect("/ws") as ws:
        join(ws, "gone01", "Neo")
        receive(ws, "presence")
        assert len(get_engine().registry.connections) == 1

    assert get_engine().registry.connections == {}
