"""
FastAPI route: Emergency alerts.

Provides endpoints to:
    POST /api/alerts/emergency         — raise an SOS in every group of the caller
    GET  /api/alerts                   — recent, non-archived alerts
    GET  /api/alerts/archived          — alerts the caller archived
    POST /api/alerts/{id}/answer       — "I'm responding"
    POST /api/alerts/{id}/archive      — hide from the caller's recent list
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from groupsos.alerts.models import Location, User
from groupsos.api.deps import get_current_user, get_services
from groupsos.services import Services

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class EmergencyRequest(BaseModel):
    """
    Optional GPS fix from the browser.

    Decimals keep the digits the client sent; the alert stores them as
    strings.
    """
    latitude: Optional[Decimal] = Field(None, ge=-90, le=90, examples=[37.7749])
    longitude: Optional[Decimal] = Field(None, ge=-180, le=180, examples=[-122.4194])
    accuracy: Optional[Decimal] = Field(None, ge=0, examples=[12.5])

    def to_location(self) -> Optional[Location]:
        return Location.from_values(self.latitude, self.longitude, self.accuracy)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/emergency", summary="Send an emergency alert to all groups")
async def send_emergency(
    request: Optional[EmergencyRequest] = None,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    location = request.to_location() if request else None
    result = await services.alerts.trigger_emergency(user.id, location)
    return {
        "message": "Emergency alerts sent successfully",
        "groupCount": result.alerts_created,
    }


@router.get("", summary="Recent alerts in the caller's groups")
async def recent_alerts(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    alerts = await services.alerts.get_group_alerts(user.id)
    return {"alerts": [a.to_dict() for a in alerts]}


@router.get("/archived", summary="Alerts archived by the caller")
async def archived_alerts(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    alerts = await services.alerts.get_archived_alerts(user.id)
    return {"alerts": [a.to_dict() for a in alerts]}


@router.post("/{alert_id}/answer", summary="Answer an alert")
async def answer_alert(
    alert_id: int,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    alert = await services.alerts.answer_alert(user.id, alert_id)
    return {"message": "Alert answered", "alert": alert.to_dict()}


@router.post("/{alert_id}/archive", summary="Archive an alert for the caller")
async def archive_alert(
    alert_id: int,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    mark = await services.alerts.archive_alert(user.id, alert_id)
    return {"message": "Alert archived", "archive": mark.to_dict()}
