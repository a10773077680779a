"""
Integration tests for the realtime chat socket.

WHAT: init handshake, message echo/reply sequence, read frames, error frames
WHY: TransportSession depends on this exact frame order
HOW: TestClient websocket against the real app
"""

import json
import uuid

import pytest
from fastapi.testclient import TestClient

from marketplace_chat.main import app


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def receive(ws) -> dict:
    return json.loads(ws.receive_text())


def init(ws, **fields) -> tuple[dict, dict]:
    ws.send_text(json.dumps({"type": "init", **fields}))
    return receive(ws), receive(ws)


@pytest.mark.integration
class TestHandshake:

    def test_anonymous_init_returns_history_then_session(self, client):
        with client.websocket_connect("/chat") as ws:
            history, session = init(ws, userName="Asha")

        assert history == {"type": "history", "messages": []}
        assert session["type"] == "session"
        assert session["sessionId"].startswith("anon_")

    def test_resume_session_replays_history(self, client):
        session_id = f"anon_1_{uuid.uuid4().hex[:9]}"
        message_id = uuid.uuid4().hex
        client.post("/api/chat", json={"message": "hi", "sessionId": session_id, "messageId": message_id})

        with client.websocket_connect("/chat") as ws:
            history, session = init(ws, sessionId=session_id)

        assert session["sessionId"] == session_id
        assert [m["id"] for m in history["messages"]] == [message_id, f"reply_{message_id}"]


@pytest.mark.integration
@pytest.mark.scenario
def test_message_echo_typing_reply_sequence(client):
    """A visitor message is acknowledged, then answered between typing frames."""
    user_id = f"u-{uuid.uuid4().hex[:8]}"
    message_id = uuid.uuid4().hex

    with client.websocket_connect("/chat") as ws:
        init(ws, userId=user_id, userName="Asha", role="customer")
        ws.send_text(json.dumps({
            "type": "message", "id": message_id, "text": "hello", "sender": "customer",
        }))
        echo, typing_on, reply, typing_off = (receive(ws) for _ in range(4))

    assert echo["type"] == "message"
    assert echo["id"] == message_id
    assert echo["sender"] == "customer"
    assert typing_on == {"type": "typing", "isTyping": True, "role": "seller"}
    assert reply["id"] == f"reply_{message_id}"
    assert reply["sender"] == "seller"
    assert reply["text"] == "Hello Asha! How can I help you today?"
    assert typing_off == {"type": "typing", "isTyping": False, "role": "seller"}


@pytest.mark.integration
class TestErrors:

    def test_message_before_init(self, client):
        with client.websocket_connect("/chat") as ws:
            ws.send_text(json.dumps({"type": "message", "id": "m-1", "text": "hi", "sender": "customer"}))
            frame = receive(ws)

        assert frame == {"type": "error", "message": "Session not initialized"}

    def test_malformed_frame_keeps_socket_open(self, client):
        with client.websocket_connect("/chat") as ws:
            ws.send_text("{not json")
            error = receive(ws)
            history, session = init(ws)

        assert error == {"type": "error", "message": "Malformed frame"}
        assert history["type"] == "history"
        assert session["type"] == "session"

    def test_read_frame_marks_replies_read(self, client):
        user_id = f"u-{uuid.uuid4().hex[:8]}"
        message_id = uuid.uuid4().hex

        with client.websocket_connect("/chat") as ws:
            init(ws, userId=user_id)
            ws.send_text(json.dumps({"type": "message", "id": message_id, "text": "help", "sender": "customer"}))
            for _ in range(4):
                receive(ws)
            ws.send_text(json.dumps({"type": "read", "reader": "customer"}))
            # A follow-up round trip guarantees the read frame was processed
            init(ws, userId=user_id)

        history = client.get("/api/chat/history", params={"userId": user_id}).json()["messages"]
        reply = next(m for m in history if m["id"] == f"reply_{message_id}")
        assert reply["isRead"] is True
