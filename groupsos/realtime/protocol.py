"""
protocol.py — Binding a live connection to a verified user.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    UNAUTHENTICATED ──auth frame, session resolves──▶ AUTHENTICATED
          │                                                │
          │ non-auth frame / bad JSON      4400            │ client or server
          │ unknown session                4401            │ close
          │ no frame within timeout        4408            │
          ▼                                                ▼
        CLOSED ◀───────────────────────────────────────────┘

The first frame must be ``{"type": "auth", "sessionId": ...}``. The
session id is resolved through the session store and that is the only
source of identity: a ``userId`` the client sends is never read. The
connection is registered only after resolution succeeds, then
``auth_success`` is sent. Whatever ends the connection, the finally
block unregisters it by exact handle.
"""

from __future__ import annotations

import asyncio
import logging
from enum import IntEnum
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from groupsos.alerts.models import User
from groupsos.realtime.connection import ConnectionState, WebSocketConnection
from groupsos.realtime.messages import (
    MessageFormatError,
    MessageType,
    auth_success,
    parse_message,
)
from groupsos.realtime.registry import ConnectionRegistry
from groupsos.storage.interfaces import SessionStore

logger = logging.getLogger(__name__)


class CloseCode(IntEnum):
    NORMAL = 1000
    AUTH_REQUIRED = 4400
    INVALID_SESSION = 4401
    AUTH_TIMEOUT = 4408


class ConnectionAuthenticator:
    """Runs the handshake and owns registry writes for live connections."""

    def __init__(
        self,
        sessions: SessionStore,
        registry: ConnectionRegistry,
        *,
        auth_timeout: float = 10.0,
    ):
        self._sessions = sessions
        self._registry = registry
        self._auth_timeout = auth_timeout

    async def authenticate_connection(
        self,
        connection: WebSocketConnection,
        credential: Any,
    ) -> Optional[User]:
        """
        Resolve ``credential`` (a session id) and bind the connection.

        On failure the connection is closed with INVALID_SESSION and None
        is returned; nothing is registered.
        """
        if connection.state != ConnectionState.UNAUTHENTICATED:
            raise RuntimeError(f"connection {connection.connection_id} already {connection.state.value}")

        user = None
        if isinstance(credential, str) and credential:
            user = await self._sessions.resolve(credential)

        if user is None:
            logger.warning("Live connection %s: unknown session", connection.connection_id)
            await connection.close(CloseCode.INVALID_SESSION, "invalid session")
            return None

        connection.mark_authenticated(user.id)
        self._registry.register(user.id, connection)
        logger.info(
            "Live connection %s authenticated", connection.connection_id,
            extra={"user_id": user.id, "connection_id": connection.connection_id},
        )
        await connection.send_json(auth_success(user.id))
        return user

    def release(self, connection: WebSocketConnection) -> None:
        """Unregister after close; a no-op if a newer connection took over."""
        connection.mark_closed()
        if connection.user_id is None:
            return
        removed = self._registry.unregister(connection.user_id, connection)
        logger.info(
            "Live connection %s closed%s",
            connection.connection_id, "" if removed else " (already superseded)",
            extra={"user_id": connection.user_id, "connection_id": connection.connection_id},
        )

    async def serve(self, websocket: WebSocket) -> None:
        """Accept, authenticate, then drain frames until the socket closes."""
        await websocket.accept()
        connection = WebSocketConnection(websocket)
        try:
            try:
                raw = await asyncio.wait_for(_receive_text(websocket), timeout=self._auth_timeout)
            except asyncio.TimeoutError:
                await connection.close(CloseCode.AUTH_TIMEOUT, "authentication timeout")
                return

            try:
                message = parse_message(raw) if raw is not None else None
            except MessageFormatError:
                message = None
            if message is None or message["type"] != MessageType.AUTH.value:
                await connection.close(CloseCode.AUTH_REQUIRED, "authentication required")
                return

            user = await self.authenticate_connection(connection, message.get("sessionId"))
            if user is None:
                return

            while True:
                raw = await _receive_text(websocket)
                _ignore_inbound(connection, raw)
        except WebSocketDisconnect as exc:
            logger.debug(
                "Live connection %s disconnected (%s)", connection.connection_id, exc.code,
                extra={"close_code": exc.code},
            )
        finally:
            self.release(connection)


async def _receive_text(websocket: WebSocket) -> Optional[str]:
    """Next text frame; None for a binary frame."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", CloseCode.NORMAL))
    return message.get("text")


def _ignore_inbound(connection: WebSocketConnection, raw: Optional[str]) -> None:
    # Clients have nothing to say after auth; a second auth cannot rebind
    try:
        message_type = parse_message(raw)["type"] if raw is not None else None
    except MessageFormatError:
        message_type = None
    logger.debug(
        "Ignoring %s frame on connection %s",
        message_type or "unparseable", connection.connection_id,
    )
