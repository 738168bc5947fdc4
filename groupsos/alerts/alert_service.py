"""
alert_service.py — Emergency and answer orchestration.

This is the coordinator that:
    1. Validates the acting user's right to act on a group or alert
    2. Writes to the Alert Ledger (commit first)
    3. Hands the resulting event to the Fan-out Engine
    4. Returns the ledger state to the caller

═══════════════════════════════════════════════════════════════════════════
EMERGENCY FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  SOS pressed        │  optional location triple
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Groups of user  │  none → NoGroupsError, nothing written
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Create alerts   │  one emergency Alert per group,
    │                     │  all written before any broadcast
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Broadcast       │  one "alert" event per Alert, groups in
    │                     │  parallel; failures are logged, never raised
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
ANSWER FLOW
═══════════════════════════════════════════════════════════════════════════

    alert missing / not in user's groups   → NotFoundOrForbidden
    already answered                       → AlreadyAnswered (no write)
    otherwise                              → conditional write, first
                                             writer wins; the loser of a
                                             race also gets AlreadyAnswered
    after commit                           → "alert-answered" broadcast

The caller's response never depends on delivery: an emergency whose
broadcast partly failed still reports the alerts it created.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from groupsos.alerts.fanout import FanoutEngine, summarize
from groupsos.alerts.models import (
    EMERGENCY_MESSAGE,
    Alert,
    AlertDetails,
    AlertKind,
    ArchivalMark,
    BroadcastReport,
    EmergencyResult,
    Location,
)
from groupsos.core.errors import (
    AlreadyAnswered,
    AlreadyArchived,
    NoGroupsError,
    NotFoundOrForbidden,
)
from groupsos.realtime.messages import AlertEvent
from groupsos.storage.interfaces import AlertLedger, MembershipStore, SessionStore

logger = logging.getLogger(__name__)


class AlertService:
    """Alert operations available to an authenticated user."""

    def __init__(
        self,
        sessions: SessionStore,
        memberships: MembershipStore,
        ledger: AlertLedger,
        fanout: FanoutEngine,
        *,
        recent_limit: int = 10,
        archived_limit: int = 50,
    ):
        self._sessions = sessions
        self._memberships = memberships
        self._ledger = ledger
        self._fanout = fanout
        self._recent_limit = recent_limit
        self._archived_limit = archived_limit

    # ── Writes ──

    async def trigger_emergency(
        self,
        user_id: int,
        location: Optional[Location] = None,
    ) -> EmergencyResult:
        """
        Raise one emergency alert in every group of ``user_id``.

        Raises
        ------
        NoGroupsError
            The user belongs to no group; nothing is created.
        """
        groups = await self._memberships.groups_of(user_id)
        if not groups:
            raise NoGroupsError(user_id)

        alerts: List[Alert] = []
        for group in groups:
            alert = await self._ledger.create(
                group.id, user_id, AlertKind.EMERGENCY, location, EMERGENCY_MESSAGE,
            )
            alerts.append(alert)

        logger.warning(
            "🚨 Emergency from user %s: %d alert(s)%s",
            user_id, len(alerts), " with location" if location else "",
            extra={"user_id": user_id},
        )

        reports = await asyncio.gather(*(
            self._announce(alert, AlertEvent.created) for alert in alerts
        ))
        delivered = [r for r in reports if r is not None]
        logger.info(
            "Emergency fan-out complete for user %s: %s",
            user_id, summarize(delivered),
            extra={"user_id": user_id},
        )
        return EmergencyResult(
            alerts_created=len(alerts),
            alert_ids=[a.id for a in alerts],
            reports=delivered,
        )

    async def answer_alert(self, user_id: int, alert_id: int) -> Alert:
        """
        Mark ``alert_id`` answered by ``user_id`` and tell the group.

        Raises
        ------
        NotFoundOrForbidden
            The alert does not exist or is outside the user's groups.
        AlreadyAnswered
            Someone answered first; the stored answer is unchanged.
        """
        alert = await self._visible_alert(user_id, alert_id)
        if alert.is_answered:
            raise AlreadyAnswered(alert_id)

        answered = await self._ledger.mark_answered(alert_id, user_id)
        logger.info(
            "Alert %s answered by user %s", alert_id, user_id,
            extra={"user_id": user_id, "alert_id": alert_id, "group_id": answered.group_id},
        )

        await self._announce(answered, AlertEvent.answered)
        return answered

    async def archive_alert(self, user_id: int, alert_id: int) -> ArchivalMark:
        """
        Hide ``alert_id`` from this user's recent list; others unaffected.

        Raises
        ------
        NotFoundOrForbidden
            The alert does not exist or is outside the user's groups.
        AlreadyArchived
            This user archived it before; nothing is written.
        """
        await self._visible_alert(user_id, alert_id)
        if await self._ledger.is_archived(user_id, alert_id):
            raise AlreadyArchived(alert_id)

        mark = await self._ledger.archive(user_id, alert_id)
        logger.info(
            "Alert %s archived by user %s", alert_id, user_id,
            extra={"user_id": user_id, "alert_id": alert_id},
        )
        return mark

    # ── Reads ──

    async def get_group_alerts(self, user_id: int) -> List[AlertDetails]:
        return await self._ledger.group_alerts(user_id, self._recent_limit)

    async def get_archived_alerts(self, user_id: int) -> List[AlertDetails]:
        return await self._ledger.archived_alerts(user_id, self._archived_limit)

    # ── Internals ──

    async def _visible_alert(self, user_id: int, alert_id: int) -> Alert:
        alert = await self._ledger.get(alert_id)
        if alert is None or not await self._memberships.is_member(user_id, alert.group_id):
            raise NotFoundOrForbidden("Alert", alert_id=alert_id)
        return alert

    async def describe(self, alert: Alert) -> AlertDetails:
        """Join ``alert`` with sender, group and answerer names."""
        sender = await self._sessions.get_user(alert.sender_id)
        group = await self._memberships.get_group(alert.group_id)
        answerer = (
            await self._sessions.get_user(alert.answered_by)
            if alert.answered_by is not None else None
        )
        return AlertDetails(
            alert=alert,
            sender_name=sender.nickname if sender else "Unknown",
            group_name=group.name if group else "Unknown",
            answered_by_name=answerer.nickname if answerer else None,
        )

    async def _announce(self, alert: Alert, make_event) -> Optional[BroadcastReport]:
        # The ledger write has already committed; delivery trouble is logged only
        try:
            event = make_event(await self.describe(alert))
            return await self._fanout.broadcast(alert.group_id, event)
        except Exception:
            logger.exception(
                "Broadcast for alert %s failed", alert.id,
                extra={"alert_id": alert.id, "group_id": alert.group_id},
            )
            return None
