"""WebSocket wrapper registered as a user's live connection."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class WebSocketConnection:
    """
    One accepted WebSocket plus its authentication state.

    Sends are serialised with a lock because several broadcasts may
    target the same member at once.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.connection_id = uuid.uuid4().hex[:12]
        self.state = ConnectionState.UNAUTHENTICATED
        self.user_id: Optional[int] = None
        self._send_lock = asyncio.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED

    @property
    def is_open(self) -> bool:
        return (
            self.state != ConnectionState.CLOSED
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_authenticated(self, user_id: int) -> None:
        if self.state != ConnectionState.UNAUTHENTICATED:
            raise RuntimeError(f"cannot authenticate a {self.state.value} connection")
        self.user_id = user_id
        self.state = ConnectionState.AUTHENTICATED

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    async def send_json(self, data: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(data, default=str))

    async def close(self, code: int, reason: str = "") -> None:
        """Server-initiated close; idempotent."""
        was_open = self.is_open
        self.mark_closed()
        if not was_open:
            return
        logger.info(
            "Closing connection %s: %s", self.connection_id, reason or code,
            extra={"close_code": code, "user_id": self.user_id},
        )
        await self.websocket.close(code=code, reason=reason)

    def __repr__(self) -> str:
        return (
            f"WebSocketConnection(id={self.connection_id}, "
            f"state={self.state.value}, user_id={self.user_id})"
        )
