"""
fanout.py — Delivering one alert event to every member of a group.

═══════════════════════════════════════════════════════════════════════════
PER-MEMBER DECISION
═══════════════════════════════════════════════════════════════════════════

    ┌──────────────────────┐
    │ registered & open    │── yes ──▶ send (bounded) ── ok ──▶ LIVE_SENT
    │ live connection?     │                  │
    └─────────┬────────────┘                  │ timeout / error
              │ no                            ▼
              ▼◀──────────────────────────────┘
    ┌──────────────────────┐
    │ push applicable?     │  not an emergency   → PUSH_SKIPPED(not_emergency)
    │                      │  member is sender   → PUSH_SKIPPED(sender)
    │                      │  no subscription    → PUSH_SKIPPED(no_subscription)
    │                      │  no VAPID keys      → PUSH_SKIPPED(push_disabled)
    └─────────┬────────────┘
              │ yes
              ▼
    ┌──────────────────────┐
    │ dispatch push        │  accepted           → PUSH_SENT
    │ (single attempt)     │  404 / 410 / 413    → clear subscription,
    │                      │                       PUSH_FAILED(permanent)
    │                      │  anything else      → PUSH_FAILED(transient)
    └──────────────────────┘

Members are processed concurrently with asyncio.gather. Any exception
raised while handling one member becomes PUSH_FAILED(error) for that
member alone; the rest of the group is unaffected.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from groupsos.alerts.channels import live
from groupsos.alerts.channels.web_push import PushDispatcher, build_push_payload
from groupsos.alerts.models import (
    BroadcastReport,
    DeliveryOutcome,
    FailureReason,
    Member,
    MemberDelivery,
    SkipReason,
)
from groupsos.realtime.messages import AlertEvent
from groupsos.realtime.registry import ConnectionRegistry
from groupsos.storage.interfaces import MembershipStore, SessionStore

logger = logging.getLogger(__name__)


class FanoutEngine:
    """Routes an AlertEvent to each group member over live or push."""

    def __init__(
        self,
        memberships: MembershipStore,
        sessions: SessionStore,
        registry: ConnectionRegistry,
        push: Optional[PushDispatcher] = None,
        *,
        send_timeout: float = 5.0,
    ):
        self._memberships = memberships
        self._sessions = sessions
        self._registry = registry
        self._push = push
        self._send_timeout = send_timeout

    @property
    def push_enabled(self) -> bool:
        return self._push is not None

    async def broadcast(self, group_id: int, event: AlertEvent) -> BroadcastReport:
        """
        Deliver ``event`` to every member of ``group_id``.

        Membership lookup errors propagate to the caller; per-member
        errors never do.
        """
        report = BroadcastReport(
            group_id=group_id,
            event_type=event.type.value,
            alert_id=event.alert_id,
        )
        members = await self._memberships.members_of(group_id)

        payload = event.to_payload()
        push_payload = build_push_payload(event.details) if event.is_emergency else None

        report.deliveries = list(await asyncio.gather(*(
            self._deliver_isolated(member, event, payload, push_payload)
            for member in members
        )))
        report.completed_at = datetime.now(timezone.utc)

        duration_ms = (report.completed_at - report.started_at).total_seconds() * 1000
        logger.info(
            "Broadcast %s for alert %s: %d/%d reached (live=%d push=%d skipped=%d failed=%d)",
            event.type.value, event.alert_id, report.reached, report.total_members,
            report.count(DeliveryOutcome.LIVE_SENT),
            report.count(DeliveryOutcome.PUSH_SENT),
            report.count(DeliveryOutcome.PUSH_SKIPPED),
            report.count(DeliveryOutcome.PUSH_FAILED),
            extra={
                "group_id": group_id,
                "alert_id": event.alert_id,
                "recipient_count": report.total_members,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return report

    async def _deliver_isolated(
        self,
        member: Member,
        event: AlertEvent,
        payload: Dict[str, Any],
        push_payload: Optional[Dict[str, Any]],
    ) -> MemberDelivery:
        try:
            return await self.deliver_to_member(member, event, payload, push_payload)
        except Exception as exc:
            logger.exception(
                "Delivery to user %s failed", member.user_id,
                extra={"user_id": member.user_id, "alert_id": event.alert_id},
            )
            return MemberDelivery(
                member.user_id,
                DeliveryOutcome.PUSH_FAILED,
                reason=FailureReason.ERROR.value,
                error_message=str(exc),
            )

    async def deliver_to_member(
        self,
        member: Member,
        event: AlertEvent,
        payload: Optional[Dict[str, Any]] = None,
        push_payload: Optional[Dict[str, Any]] = None,
    ) -> MemberDelivery:
        """Decide and perform delivery of ``event`` to a single member."""
        if payload is None:
            payload = event.to_payload()

        connection = self._registry.lookup(member.user_id)
        if connection is not None and connection.is_open:
            sent = await live.send(
                connection, payload,
                user_id=member.user_id,
                timeout_seconds=self._send_timeout,
            )
            if sent:
                return MemberDelivery(member.user_id, DeliveryOutcome.LIVE_SENT)

        skip = self._skip_reason(member, event)
        if skip is not None:
            logger.debug(
                "Push skipped for user %s: %s", member.user_id, skip.value,
                extra={"user_id": member.user_id, "reason": skip.value},
            )
            return MemberDelivery(member.user_id, DeliveryOutcome.PUSH_SKIPPED, reason=skip.value)

        if push_payload is None:
            push_payload = build_push_payload(event.details)

        result = await self._push.send(member.push_subscription, push_payload)
        if result.ok:
            return MemberDelivery(member.user_id, DeliveryOutcome.PUSH_SENT)

        if result.permanent:
            await self._sessions.set_push_subscription(member.user_id, None)
            logger.info(
                "Cleared invalid push subscription for user %s (%s)",
                member.user_id, result.status_code,
                extra={"user_id": member.user_id, "status_code": result.status_code},
            )
            reason = FailureReason.PERMANENT
        else:
            reason = FailureReason.TRANSIENT

        logger.warning(
            "Push to user %s failed (%s): %s",
            member.user_id, reason.value, result.error_message,
            extra={"user_id": member.user_id, "outcome": "push_failed", "reason": reason.value},
        )
        return MemberDelivery(
            member.user_id,
            DeliveryOutcome.PUSH_FAILED,
            reason=reason.value,
            error_message=result.error_message,
        )

    def _skip_reason(self, member: Member, event: AlertEvent) -> Optional[SkipReason]:
        if not event.is_emergency:
            return SkipReason.NOT_EMERGENCY
        if member.user_id == event.sender_id:
            return SkipReason.SENDER
        if not member.push_subscription:
            return SkipReason.NO_SUBSCRIPTION
        if self._push is None:
            return SkipReason.PUSH_DISABLED
        return None


def summarize(reports: List[BroadcastReport]) -> Dict[str, int]:
    """Outcome totals across several broadcasts."""
    totals = {outcome.value: 0 for outcome in DeliveryOutcome}
    for report in reports:
        for outcome in DeliveryOutcome:
            totals[outcome.value] += report.count(outcome)
    return totals
