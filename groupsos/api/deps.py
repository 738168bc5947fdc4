"""
Shared route dependencies.

Identity for HTTP calls comes from the session header only; it is
resolved through the session store and never taken from the body.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from groupsos.alerts.models import User
from groupsos.core.errors import AuthenticationError
from groupsos.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(
    request: Request,
    services: Services = Depends(get_services),
) -> User:
    session_id: Optional[str] = request.headers.get(services.settings.SESSION_HEADER)
    if not session_id:
        raise AuthenticationError("Session ID required")

    user = await services.sessions.resolve(session_id)
    if user is None:
        raise AuthenticationError("User not found")
    return user
