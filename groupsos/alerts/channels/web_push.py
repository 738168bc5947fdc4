"""
web_push.py — Web push notification channel.

Delivery mechanism:
    • Web Push Protocol (RFC 8030) with VAPID authentication via pywebpush
    • Payload: condensed JSON summary rendered by the service worker
    • pywebpush is blocking (requests), so each call runs in a worker thread

═══════════════════════════════════════════════════════════════════════════
PUSH SERVICE RESPONSES
═══════════════════════════════════════════════════════════════════════════

    Status          Meaning                         Result
    ──────────      ─────────────────────────────   ───────────────────
    2xx             accepted                        DELIVERED
    404 / 410       subscription expired or gone    PERMANENT_FAILURE
    413             payload too large               PERMANENT_FAILURE
    anything else   throttled, 5xx, auth problems   TRANSIENT_FAILURE
    no response     timeout, connection refused     TRANSIENT_FAILURE

A permanent failure tells the caller to forget the subscription so it is
not retried on the next broadcast. A stored descriptor that is not valid
subscription JSON is treated the same way.

The summary carries only what a lock-screen notification needs: who,
which group, whether a location was shared, and the alert id to open.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import requests
from pywebpush import WebPushException, webpush

from groupsos.alerts.models import AlertDetails
from groupsos.core.config import Settings

logger = logging.getLogger(__name__)

PERMANENT_STATUS_CODES = frozenset({404, 410, 413})


class PushStatus(str, Enum):
    DELIVERED = "delivered"
    PERMANENT_FAILURE = "permanent_failure"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass
class PushResult:
    status: PushStatus
    status_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == PushStatus.DELIVERED

    @property
    def permanent(self) -> bool:
        return self.status == PushStatus.PERMANENT_FAILURE


class PushDispatcher(Protocol):
    async def send(self, descriptor: str, payload: Dict[str, Any]) -> PushResult: ...


def build_push_payload(details: AlertDetails) -> Dict[str, Any]:
    """Condensed notification for an emergency alert."""
    alert = details.alert
    body = f"{details.sender_name} needs help ({details.group_name})"
    if alert.has_location:
        body += " · location shared"
    return {
        "title": "🚨 EMERGENCY ALERT",
        "body": body,
        "tag": f"alert-{alert.id}",
        "requireInteraction": True,
        "data": {
            "alertId": alert.id,
            "senderName": details.sender_name,
            "groupName": details.group_name,
            "hasLocation": alert.has_location,
            "url": "/alerts",
        },
    }


def parse_subscription(descriptor: str) -> Optional[Dict[str, Any]]:
    """Decode a stored descriptor; None unless it has endpoint and keys."""
    try:
        info = json.loads(descriptor)
    except (TypeError, ValueError):
        return None
    if not isinstance(info, dict) or not info.get("endpoint"):
        return None
    keys = info.get("keys")
    if not isinstance(keys, dict) or not keys.get("p256dh") or not keys.get("auth"):
        return None
    return info


class WebPushDispatcher:
    """VAPID-signed Web Push sender."""

    def __init__(
        self,
        vapid_private_key: str,
        vapid_claims_sub: str,
        *,
        ttl_seconds: int = 86400,
        timeout_seconds: float = 10.0,
    ):
        self._vapid_private_key = vapid_private_key
        self._vapid_claims_sub = vapid_claims_sub
        self._ttl = ttl_seconds
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["WebPushDispatcher"]:
        if not settings.push_enabled:
            logger.warning("VAPID keys not configured — push notifications disabled")
            return None
        return cls(
            settings.VAPID_PRIVATE_KEY,
            settings.VAPID_CLAIMS_SUB,
            ttl_seconds=settings.PUSH_TTL_SECONDS,
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )

    def _send_blocking(self, subscription_info: Dict[str, Any], data: str):
        # webpush adds aud/exp to the claims dict, so hand it a fresh one
        return webpush(
            subscription_info=subscription_info,
            data=data,
            vapid_private_key=self._vapid_private_key,
            vapid_claims={"sub": self._vapid_claims_sub},
            ttl=self._ttl,
            timeout=self._timeout,
        )

    async def send(self, descriptor: str, payload: Dict[str, Any]) -> PushResult:
        subscription_info = parse_subscription(descriptor)
        if subscription_info is None:
            return PushResult(
                PushStatus.PERMANENT_FAILURE,
                error_message="stored subscription is malformed",
            )

        try:
            response = await asyncio.to_thread(
                self._send_blocking, subscription_info, json.dumps(payload),
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            status = (
                PushStatus.PERMANENT_FAILURE
                if status_code in PERMANENT_STATUS_CODES
                else PushStatus.TRANSIENT_FAILURE
            )
            logger.warning(
                "[WEB_PUSH] Push service rejected notification (%s): %s",
                status_code, exc.message,
            )
            return PushResult(status, status_code=status_code, error_message=exc.message)
        except requests.RequestException as exc:
            logger.warning("[WEB_PUSH] Push service unreachable: %s", exc)
            return PushResult(PushStatus.TRANSIENT_FAILURE, error_message=str(exc))

        return PushResult(
            PushStatus.DELIVERED,
            status_code=getattr(response, "status_code", None),
        )
