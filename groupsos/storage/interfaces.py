"""
Collaborator contracts the alert core calls into.

Each store owns its records exclusively: the session store owns users,
the membership store owns groups and memberships, and the ledger owns
alerts and archival marks. Conflicts are signalled by raising the
matching ConflictError subclass; absence is signalled by returning None.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

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


class SessionStore(Protocol):
    async def resolve(self, session_id: str) -> Optional[User]: ...

    async def create_user(self, nickname: str, session_id: str) -> User: ...

    async def get_user(self, user_id: int) -> Optional[User]: ...

    async def update_nickname(self, user_id: int, nickname: str) -> Optional[User]: ...

    async def set_push_subscription(
        self, user_id: int, descriptor: Optional[str]
    ) -> Optional[User]: ...


class MembershipStore(Protocol):
    async def members_of(self, group_id: int) -> List[Member]: ...

    async def groups_of(self, user_id: int) -> List[GroupSummary]: ...

    async def get_group(self, group_id: int) -> Optional[Group]: ...

    async def get_group_by_token(self, token: str) -> Optional[Group]: ...

    async def create_group(self, name: str, created_by: int) -> Group: ...

    async def add_member(self, group_id: int, user_id: int) -> None:
        """Raises AlreadyMember on a duplicate (group, user) pair."""
        ...

    async def is_member(self, user_id: int, group_id: int) -> bool: ...


class AlertLedger(Protocol):
    async def create(
        self,
        group_id: int,
        sender_id: int,
        kind: AlertKind,
        location: Optional[Location],
        message: str,
    ) -> Alert: ...

    async def get(self, alert_id: int) -> Optional[Alert]: ...

    async def mark_answered(self, alert_id: int, answerer_id: int) -> Alert:
        """First writer wins; later callers get AlreadyAnswered."""
        ...

    async def archive(self, user_id: int, alert_id: int) -> ArchivalMark:
        """Raises AlreadyArchived on a duplicate (user, alert) pair."""
        ...

    async def is_archived(self, user_id: int, alert_id: int) -> bool: ...

    async def group_alerts(self, user_id: int, limit: int) -> List[AlertDetails]: ...

    async def archived_alerts(self, user_id: int, limit: int) -> List[AlertDetails]: ...
