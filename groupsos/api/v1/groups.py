"""
FastAPI route: Groups and membership.

Provides endpoints to:
    GET  /api/groups                — groups of the caller, with member counts
    POST /api/groups/create         — create a group and join it
    POST /api/groups/join           — join by invite token
    GET  /api/groups/{id}/members   — roster (members only)
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from groupsos.alerts.models import User
from groupsos.api.deps import get_current_user, get_services
from groupsos.services import Services

router = APIRouter(prefix="/api/groups", tags=["groups"])


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=30, examples=["Family"])
    nickname: str = Field(..., min_length=1, max_length=20, examples=["Alice"])


class JoinGroupRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=32, examples=["K7Q2M9XA"])
    nickname: str = Field(..., min_length=1, max_length=20, examples=["Bob"])


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", summary="List the caller's groups")
async def list_groups(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    groups = await services.groups.list_groups(user.id)
    return {"groups": [g.to_dict() for g in groups]}


@router.post("/create", summary="Create a group")
async def create_group(
    request: CreateGroupRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    group = await services.groups.create_group(user.id, request.name, request.nickname)
    return {
        "message": "Group created successfully",
        "group": {"id": group.id, "name": group.name, "token": group.token},
    }


@router.post("/join", summary="Join a group by invite token")
async def join_group(
    request: JoinGroupRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    group = await services.groups.join_group(user.id, request.token, request.nickname)
    return {
        "message": "Successfully joined group",
        "group": {"id": group.id, "name": group.name},
    }


@router.get("/{group_id}/members", summary="List group members")
async def list_members(
    group_id: int,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    members = await services.groups.list_members(user.id, group_id)
    return {"members": [m.to_dict() for m in members]}
