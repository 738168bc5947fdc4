"""
FastAPI route: Web Push subscription management.

Provides endpoints to:
    GET  /api/push/vapid-key      — public VAPID key for the service worker
    POST /api/push/subscribe      — store the browser's PushSubscription
    POST /api/push/unsubscribe    — forget it
    POST /api/push/test           — send a test notification to the caller
"""

from __future__ import annotations

import json
from typing import Any, Dict, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from groupsos.alerts.channels.web_push import parse_subscription
from groupsos.alerts.models import User
from groupsos.api.deps import get_current_user, get_services
from groupsos.core.errors import PreconditionError, PushConfigurationError, ValidationError
from groupsos.core.logging_config import get_logger
from groupsos.services import Services

logger = get_logger(__name__)

router = APIRouter(prefix="/api/push", tags=["push"])

TEST_NOTIFICATION = {
    "title": "GroupSOS",
    "body": "Push notifications are working",
    "tag": "test",
    "data": {"url": "/"},
}


class SubscribeRequest(BaseModel):
    """The browser sends ``JSON.stringify(subscription)``; an object is accepted too."""
    subscription: Union[str, Dict[str, Any]] = Field(
        ...,
        description="PushSubscription with endpoint and keys.p256dh / keys.auth",
    )

    def descriptor(self) -> str:
        if isinstance(self.subscription, str):
            return self.subscription
        return json.dumps(self.subscription)


@router.get("/vapid-key", summary="Public VAPID key")
async def vapid_key(services: Services = Depends(get_services)):
    if not services.settings.VAPID_PUBLIC_KEY:
        raise PushConfigurationError()
    return {"publicKey": services.settings.VAPID_PUBLIC_KEY}


@router.post("/subscribe", summary="Store a push subscription")
async def subscribe(
    request: SubscribeRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    descriptor = request.descriptor()
    if parse_subscription(descriptor) is None:
        raise ValidationError(
            "Subscription must include endpoint and keys",
            field="subscription",
        )
    await services.sessions.set_push_subscription(user.id, descriptor)
    logger.info("Push subscription stored", extra={"user_id": user.id})
    return {"message": "Subscribed to push notifications"}


@router.post("/unsubscribe", summary="Remove the push subscription")
async def unsubscribe(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.sessions.set_push_subscription(user.id, None)
    logger.info("Push subscription removed", extra={"user_id": user.id})
    return {"message": "Unsubscribed from push notifications"}


@router.post("/test", summary="Send a test push notification to the caller")
async def test_push(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    if services.push is None:
        raise PushConfigurationError()
    if not user.push_subscription:
        raise PreconditionError(
            "No push subscription registered",
            error_code="NO_SUBSCRIPTION",
        )

    result = await services.push.send(user.push_subscription, TEST_NOTIFICATION)
    if result.permanent:
        await services.sessions.set_push_subscription(user.id, None)
    return {
        "success": result.ok,
        "status": result.status.value,
        "statusCode": result.status_code,
    }
