"""
FastAPI route: Session bootstrap.

Provides endpoints to:
    POST /api/auth    — get or create the user behind a session id
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from groupsos.api.deps import get_services
from groupsos.services import Services

router = APIRouter(prefix="/api", tags=["auth"])


class AuthRequest(BaseModel):
    sessionId: Optional[str] = Field(
        None, max_length=128,
        description="Existing session id; omitted to start a new session",
    )


class AuthResponse(BaseModel):
    user: Dict[str, Any]
    sessionId: str


@router.post(
    "/auth",
    response_model=AuthResponse,
    summary="Get or create a user for a session",
)
async def authenticate(
    request: Optional[AuthRequest] = None,
    services: Services = Depends(get_services),
):
    session_id = request.sessionId if request else None
    user, session_id = await services.groups.ensure_user(session_id)
    return AuthResponse(user=user.to_dict(), sessionId=session_id)
