"""
models.py — Shared data structures for the group alert system.

Defines:
    • AlertKind        — emergency | resolved
    • DeliveryOutcome  — tagged per-member result of a broadcast
    • Location         — GPS triple kept as decimal strings
    • User / Group / GroupSummary / Member — store records
    • Alert / AlertDetails / ArchivalMark  — ledger records
    • MemberDelivery / BroadcastReport     — fan-out results

═══════════════════════════════════════════════════════════════════════════
PER-MEMBER DELIVERY OUTCOMES
═══════════════════════════════════════════════════════════════════════════

    Outcome         Meaning
    ────────────    ─────────────────────────────────────────────────────
    LIVE_SENT       event written to the member's live connection
    PUSH_SENT       no usable live connection; push service accepted it
    PUSH_SKIPPED    no usable live connection and push not applicable
                    (reason: no_subscription | not_emergency | sender |
                    push_disabled)
    PUSH_FAILED     push attempted and rejected
                    (reason: permanent | transient)

A member reached live is never also pushed, so each member gets at most
one notification per alert.

Coordinates are stored as strings exactly as received so that a value
such as "37.7749" survives storage and serialisation without float drift.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertKind(str, Enum):
    EMERGENCY = "emergency"
    RESOLVED = "resolved"


class DeliveryOutcome(str, Enum):
    LIVE_SENT = "live_sent"
    PUSH_SENT = "push_sent"
    PUSH_SKIPPED = "push_skipped"
    PUSH_FAILED = "push_failed"


class SkipReason(str, Enum):
    NO_SUBSCRIPTION = "no_subscription"
    NOT_EMERGENCY = "not_emergency"
    SENDER = "sender"
    PUSH_DISABLED = "push_disabled"


class FailureReason(str, Enum):
    PERMANENT = "permanent"   # subscription gone / payload too large
    TRANSIENT = "transient"   # anything else the push service reported
    ERROR = "error"           # raised before or while dispatching


EMERGENCY_MESSAGE = "EMERGENCY ALERT"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _decimal_string(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# ═══════════════════════════════════════════════════════════════════════════
# Location
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Location:
    """GPS fix attached to an alert."""
    latitude: str
    longitude: str
    accuracy: Optional[str] = None

    @classmethod
    def from_values(
        cls,
        latitude: Any = None,
        longitude: Any = None,
        accuracy: Any = None,
    ) -> Optional["Location"]:
        """
        Build a Location from raw request values.

        Returns None unless both coordinates are present; accuracy alone
        is meaningless.
        """
        lat = _decimal_string(latitude)
        lon = _decimal_string(longitude)
        if lat is None or lon is None:
            return None
        return cls(latitude=lat, longitude=lon, accuracy=_decimal_string(accuracy))


# ═══════════════════════════════════════════════════════════════════════════
# Store Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class User:
    id: int
    nickname: str
    session_id: str
    push_subscription: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        # sessionId is returned only by the auth endpoint, never here
        return {
            "id": self.id,
            "nickname": self.nickname,
            "hasPushSubscription": self.push_subscription is not None,
        }


@dataclass
class Group:
    id: int
    name: str
    token: str
    created_by: int
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "token": self.token,
            "createdBy": self.created_by,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class GroupSummary(Group):
    member_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["memberCount"] = self.member_count
        return d


@dataclass
class Member:
    """A group member as seen by the fan-out engine."""
    user_id: int
    nickname: str
    push_subscription: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.user_id, "nickname": self.nickname}


@dataclass
class Alert:
    id: int
    group_id: int
    sender_id: int
    message: str
    kind: AlertKind
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    location_accuracy: Optional[str] = None
    answered_by: Optional[int] = None
    answered_at: Optional[datetime] = None
    sent_at: datetime = field(default_factory=_now)

    @property
    def is_answered(self) -> bool:
        return self.answered_by is not None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_emergency(self) -> bool:
        return self.kind == AlertKind.EMERGENCY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "senderId": self.sender_id,
            "message": self.message,
            "type": self.kind.value,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "locationAccuracy": self.location_accuracy,
            "answeredBy": self.answered_by,
            "answeredAt": _iso(self.answered_at),
            "sentAt": _iso(self.sent_at),
        }


@dataclass
class AlertDetails:
    """An alert joined with the display names a reader needs."""
    alert: Alert
    sender_name: str
    group_name: str
    answered_by_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = self.alert.to_dict()
        d["senderName"] = self.sender_name
        d["groupName"] = self.group_name
        d["answeredByName"] = self.answered_by_name
        return d


@dataclass
class ArchivalMark:
    user_id: int
    alert_id: int
    archived_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "alertId": self.alert_id,
            "archivedAt": _iso(self.archived_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Fan-out Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class MemberDelivery:
    """Tagged result of delivering one event to one member."""
    user_id: int
    outcome: DeliveryOutcome
    reason: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_reached(self) -> bool:
        return self.outcome in (DeliveryOutcome.LIVE_SENT, DeliveryOutcome.PUSH_SENT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "error_message": self.error_message,
        }


@dataclass
class BroadcastReport:
    """Per-broadcast summary; never surfaced to the triggering user."""
    group_id: int
    event_type: str
    alert_id: Optional[int] = None
    deliveries: List[MemberDelivery] = field(default_factory=list)
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    def count(self, outcome: DeliveryOutcome) -> int:
        return sum(1 for d in self.deliveries if d.outcome == outcome)

    @property
    def total_members(self) -> int:
        return len(self.deliveries)

    @property
    def reached(self) -> int:
        return sum(1 for d in self.deliveries if d.is_reached)

    def for_user(self, user_id: int) -> Optional[MemberDelivery]:
        for d in self.deliveries:
            if d.user_id == user_id:
                return d
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "event_type": self.event_type,
            "alert_id": self.alert_id,
            "total_members": self.total_members,
            "reached": self.reached,
            "outcomes": {o.value: self.count(o) for o in DeliveryOutcome},
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "deliveries": [d.to_dict() for d in self.deliveries],
        }


@dataclass
class EmergencyResult:
    alerts_created: int
    alert_ids: List[int] = field(default_factory=list)
    reports: List[BroadcastReport] = field(default_factory=list)
