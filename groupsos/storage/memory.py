"""
In-process implementation of all three store protocols.

Used for local development without PostgreSQL and as the store behind
the fan-out and service tests. No method awaits between its read and its
write, so every operation is atomic with respect to other coroutines on
the same event loop.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from groupsos.alerts.models import (
    Alert,
    AlertDetails,
    AlertKind,
    ArchivalMark,
    Group,
    GroupSummary,
    Location,
    Member,
    User,
)
from groupsos.core.errors import (
    AlreadyAnswered,
    AlreadyArchived,
    AlreadyMember,
    ConflictError,
    GroupSOSError,
    NotFoundError,
)
from groupsos.core.tokens import generate_group_token

TOKEN_ATTEMPTS = 5


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """SessionStore + MembershipStore + AlertLedger backed by dicts."""

    def __init__(self, token_factory: Callable[[], str] = generate_group_token):
        self._token_factory = token_factory
        self.users: Dict[int, User] = {}
        self.groups: Dict[int, Group] = {}
        self.alerts: Dict[int, Alert] = {}
        # group_id -> [(user_id, joined_at)] in join order
        self._members: Dict[int, List[Tuple[int, datetime]]] = {}
        self._archived: Dict[Tuple[int, int], ArchivalMark] = {}
        self._user_ids = itertools.count(1)
        self._group_ids = itertools.count(1)
        self._alert_ids = itertools.count(1)

    # ── SessionStore ──

    async def resolve(self, session_id: str) -> Optional[User]:
        if not session_id:
            return None
        for user in self.users.values():
            if user.session_id == session_id:
                return replace(user)
        return None

    async def create_user(self, nickname: str, session_id: str) -> User:
        if any(u.session_id == session_id for u in self.users.values()):
            raise ConflictError("Session already bound to a user", error_code="SESSION_EXISTS")
        user = User(id=next(self._user_ids), nickname=nickname, session_id=session_id)
        self.users[user.id] = user
        return replace(user)

    async def get_user(self, user_id: int) -> Optional[User]:
        user = self.users.get(user_id)
        return replace(user) if user else None

    async def update_nickname(self, user_id: int, nickname: str) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        user.nickname = nickname
        return replace(user)

    async def set_push_subscription(
        self, user_id: int, descriptor: Optional[str]
    ) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        user.push_subscription = descriptor
        return replace(user)

    # ── MembershipStore ──

    async def members_of(self, group_id: int) -> List[Member]:
        members = []
        for user_id, _joined in self._members.get(group_id, []):
            user = self.users[user_id]
            members.append(Member(
                user_id=user.id,
                nickname=user.nickname,
                push_subscription=user.push_subscription,
            ))
        return members

    async def groups_of(self, user_id: int) -> List[GroupSummary]:
        summaries = []
        for group in self.groups.values():
            roster = self._members.get(group.id, [])
            if any(uid == user_id for uid, _ in roster):
                summaries.append(GroupSummary(
                    id=group.id,
                    name=group.name,
                    token=group.token,
                    created_by=group.created_by,
                    created_at=group.created_at,
                    member_count=len(roster),
                ))
        return summaries

    async def get_group(self, group_id: int) -> Optional[Group]:
        group = self.groups.get(group_id)
        return replace(group) if group else None

    async def get_group_by_token(self, token: str) -> Optional[Group]:
        for group in self.groups.values():
            if group.token == token:
                return replace(group)
        return None

    async def create_group(self, name: str, created_by: int) -> Group:
        taken = {g.token for g in self.groups.values()}
        for _ in range(TOKEN_ATTEMPTS):
            token = self._token_factory()
            if token not in taken:
                break
        else:
            raise GroupSOSError(
                "Could not allocate a unique group token",
                error_code="TOKEN_EXHAUSTED",
            )
        group = Group(id=next(self._group_ids), name=name, token=token, created_by=created_by)
        self.groups[group.id] = group
        self._members[group.id] = []
        return replace(group)

    async def add_member(self, group_id: int, user_id: int) -> None:
        roster = self._members.setdefault(group_id, [])
        if any(uid == user_id for uid, _ in roster):
            raise AlreadyMember(group_id)
        roster.append((user_id, _now()))

    async def is_member(self, user_id: int, group_id: int) -> bool:
        return any(uid == user_id for uid, _ in self._members.get(group_id, []))

    # ── AlertLedger ──

    async def create(
        self,
        group_id: int,
        sender_id: int,
        kind: AlertKind,
        location: Optional[Location],
        message: str,
    ) -> Alert:
        alert = Alert(
            id=next(self._alert_ids),
            group_id=group_id,
            sender_id=sender_id,
            message=message,
            kind=kind,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            location_accuracy=location.accuracy if location else None,
        )
        self.alerts[alert.id] = alert
        return replace(alert)

    async def get(self, alert_id: int) -> Optional[Alert]:
        alert = self.alerts.get(alert_id)
        return replace(alert) if alert else None

    async def mark_answered(self, alert_id: int, answerer_id: int) -> Alert:
        alert = self.alerts.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        if alert.is_answered:
            raise AlreadyAnswered(alert_id)
        alert.answered_by = answerer_id
        alert.answered_at = _now()
        return replace(alert)

    async def archive(self, user_id: int, alert_id: int) -> ArchivalMark:
        key = (user_id, alert_id)
        if key in self._archived:
            raise AlreadyArchived(alert_id)
        mark = ArchivalMark(user_id=user_id, alert_id=alert_id)
        self._archived[key] = mark
        return replace(mark)

    async def is_archived(self, user_id: int, alert_id: int) -> bool:
        return (user_id, alert_id) in self._archived

    def _details(self, alert: Alert) -> AlertDetails:
        answerer = self.users.get(alert.answered_by) if alert.answered_by else None
        return AlertDetails(
            alert=replace(alert),
            sender_name=self.users[alert.sender_id].nickname,
            group_name=self.groups[alert.group_id].name,
            answered_by_name=answerer.nickname if answerer else None,
        )

    @staticmethod
    def _newest_first(alerts: List[Alert]) -> List[Alert]:
        return sorted(alerts, key=lambda a: (a.sent_at, a.id), reverse=True)

    async def group_alerts(self, user_id: int, limit: int) -> List[AlertDetails]:
        group_ids: Set[int] = {
            gid for gid, roster in self._members.items()
            if any(uid == user_id for uid, _ in roster)
        }
        visible = [
            a for a in self.alerts.values()
            if a.group_id in group_ids and (user_id, a.id) not in self._archived
        ]
        return [self._details(a) for a in self._newest_first(visible)[:limit]]

    async def archived_alerts(self, user_id: int, limit: int) -> List[AlertDetails]:
        archived = [
            self.alerts[alert_id]
            for (uid, alert_id) in self._archived
            if uid == user_id and alert_id in self.alerts
        ]
        return [self._details(a) for a in self._newest_first(archived)[:limit]]
