"""
FastAPI route: Live alert channel.

Provides endpoints to:
    WS /ws    — authenticate with {"type": "auth", "sessionId": ...}, then
                receive "alert" and "alert-answered" events
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from groupsos.core.config import settings

router = APIRouter(tags=["live"])


@router.websocket(settings.WS_PATH)
async def live_alerts(websocket: WebSocket):
    services = websocket.app.state.services
    await services.authenticator.serve(websocket)
