"""
test_live_protocol.py — WebSocket authentication handshake.

Covers:
    • auth frame with a known session → auth_success + registration
    • unknown session / non-auth first frame / malformed JSON / silence
      → distinct close codes, nothing registered
    • Client-supplied userId is ignored
    • Close unregisters; a superseded connection's close leaves the newer one
    • Message parsing helpers

Run with:
    pytest tests/test_live_protocol.py -v
"""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from groupsos.main import create_app
from groupsos.realtime.messages import (
    MessageFormatError,
    MessageType,
    auth_success,
    parse_message,
)
from groupsos.realtime.protocol import CloseCode

from fakes import make_user


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


@pytest.fixture
def alice(store):
    return asyncio.run(make_user(store, "Alice"))


@pytest.fixture
def bob(store):
    return asyncio.run(make_user(store, "Bob"))


def _auth(ws, session_id, **extra):
    ws.send_json({"type": "auth", "sessionId": session_id, **extra})
    return ws.receive_json()


class TestHandshake:

    def test_known_session_is_registered(self, client, registry, alice):
        with client.websocket_connect("/ws") as ws:
            reply = _auth(ws, alice.session_id)

            assert reply == {"type": "auth_success", "userId": alice.id}
            assert registry.lookup(alice.id) is not None
            assert registry.lookup(alice.id).is_open

    def test_client_supplied_user_id_is_ignored(self, client, registry, alice, bob):
        with client.websocket_connect("/ws") as ws:
            reply = _auth(ws, alice.session_id, userId=bob.id)

            assert reply["userId"] == alice.id
            assert registry.lookup(bob.id) is None

    def test_unknown_session_is_closed(self, client, registry):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "sessionId": "no-such-session"})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == CloseCode.INVALID_SESSION
        assert len(registry) == 0

    def test_missing_session_id_is_closed(self, client, registry):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "userId": 1})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == CloseCode.INVALID_SESSION
        assert len(registry) == 0

    def test_first_frame_must_be_auth(self, client, registry, alice):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "alert", "sessionId": alice.session_id})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == CloseCode.AUTH_REQUIRED
        assert len(registry) == 0

    def test_malformed_first_frame(self, client, registry):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == CloseCode.AUTH_REQUIRED

    def test_silent_client_times_out(self, client, registry):
        with client.websocket_connect("/ws") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == CloseCode.AUTH_TIMEOUT
        assert len(registry) == 0


class TestAfterAuthentication:

    def test_close_unregisters(self, client, registry, alice):
        with client.websocket_connect("/ws") as ws:
            _auth(ws, alice.session_id)
            assert registry.lookup(alice.id) is not None

        assert registry.lookup(alice.id) is None

    def test_second_auth_frame_cannot_rebind(self, client, registry, alice, bob):
        with client.websocket_connect("/ws") as ws:
            _auth(ws, alice.session_id)
            handle = registry.lookup(alice.id)
            ws.send_json({"type": "auth", "sessionId": bob.session_id})
            ws.send_json({"type": "ping"})

            assert registry.lookup(alice.id) is handle
            assert registry.lookup(bob.id) is None

        assert len(registry) == 0

    def test_stale_close_keeps_newer_connection(self, client, registry, alice):
        first = client.websocket_connect("/ws")
        first.__enter__()
        _auth(first, alice.session_id)
        first_handle = registry.lookup(alice.id)

        with client.websocket_connect("/ws") as second:
            _auth(second, alice.session_id)
            second_handle = registry.lookup(alice.id)
            assert second_handle is not first_handle

            first.__exit__(None, None, None)

            assert registry.lookup(alice.id) is second_handle

        assert registry.lookup(alice.id) is None


class TestMessages:

    def test_parse_valid(self):
        assert parse_message('{"type": "auth", "sessionId": "s"}')["sessionId"] == "s"

    @pytest.mark.parametrize("raw", ["", "nope", "[]", '{"sessionId": "s"}', '{"type": 3}'])
    def test_parse_invalid(self, raw):
        with pytest.raises(MessageFormatError):
            parse_message(raw)

    def test_auth_success_envelope(self):
        assert auth_success(7) == {"type": MessageType.AUTH_SUCCESS.value, "userId": 7}

    def test_wire_names(self):
        assert MessageType.ALERT.value == "alert"
        assert MessageType.ALERT_ANSWERED.value == "alert-answered"
