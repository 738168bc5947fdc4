"""
SQL implementations of the store protocols (SQLAlchemy 2.0 async).

Every method opens its own session from the injected factory and commits
before returning, so a caller that goes on to broadcast never announces
an uncommitted write.

Uniqueness is enforced by the database (session id, group token,
(group, user) membership, (user, alert) archival) and surfaced as the
matching ConflictError. Answering is a conditional UPDATE guarded by
``answered_by IS NULL``, which makes the first writer win even when two
requests race.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

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
from groupsos.storage.tables import (
    AlertRow,
    ArchivedAlertRow,
    GroupMemberRow,
    GroupRow,
    UserRow,
)

logger = logging.getLogger(__name__)

TOKEN_ATTEMPTS = 5


# ── Row → record conversion ──

def _user(row: UserRow) -> User:
    return User(
        id=row.id,
        nickname=row.nickname,
        session_id=row.session_id,
        push_subscription=row.push_subscription,
    )


def _group(row: GroupRow) -> Group:
    return Group(
        id=row.id,
        name=row.name,
        token=row.token,
        created_by=row.created_by,
        created_at=row.created_at,
    )


def _alert(row: AlertRow) -> Alert:
    return Alert(
        id=row.id,
        group_id=row.group_id,
        sender_id=row.sender_id,
        message=row.message,
        kind=AlertKind(row.type),
        latitude=row.latitude,
        longitude=row.longitude,
        location_accuracy=row.location_accuracy,
        answered_by=row.answered_by,
        answered_at=row.answered_at,
        sent_at=row.sent_at,
    )


class _Repository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory


# ═══════════════════════════════════════════════════════════════════════════
# Session Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlSessionStore(_Repository):

    async def resolve(self, session_id: str) -> Optional[User]:
        if not session_id:
            return None
        async with self._session_factory() as session:
            row = await session.scalar(
                select(UserRow).where(UserRow.session_id == session_id)
            )
            return _user(row) if row else None

    async def create_user(self, nickname: str, session_id: str) -> User:
        async with self._session_factory() as session:
            row = UserRow(nickname=nickname, session_id=session_id)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(
                    "Session already bound to a user", error_code="SESSION_EXISTS",
                ) from exc
            logger.info("User created", extra={"user_id": row.id})
            return _user(row)

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._session_factory() as session:
            row = await session.get(UserRow, user_id)
            return _user(row) if row else None

    async def update_nickname(self, user_id: int, nickname: str) -> Optional[User]:
        async with self._session_factory() as session:
            row = await session.get(UserRow, user_id)
            if row is None:
                return None
            row.nickname = nickname
            await session.commit()
            return _user(row)

    async def set_push_subscription(
        self, user_id: int, descriptor: Optional[str]
    ) -> Optional[User]:
        async with self._session_factory() as session:
            row = await session.get(UserRow, user_id)
            if row is None:
                return None
            row.push_subscription = descriptor
            await session.commit()
            return _user(row)


# ═══════════════════════════════════════════════════════════════════════════
# Group Membership Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlMembershipStore(_Repository):

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        token_factory: Callable[[], str] = generate_group_token,
    ):
        super().__init__(session_factory)
        self._token_factory = token_factory

    async def members_of(self, group_id: int) -> List[Member]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(UserRow)
                .join(GroupMemberRow, GroupMemberRow.user_id == UserRow.id)
                .where(GroupMemberRow.group_id == group_id)
                .order_by(GroupMemberRow.joined_at, GroupMemberRow.id)
            )
            return [
                Member(
                    user_id=row.id,
                    nickname=row.nickname,
                    push_subscription=row.push_subscription,
                )
                for row in result
            ]

    async def groups_of(self, user_id: int) -> List[GroupSummary]:
        # Join memberships twice: once to filter, once to count
        mine = aliased(GroupMemberRow)
        stmt = (
            select(GroupRow, func.count(GroupMemberRow.id).label("member_count"))
            .join(mine, mine.group_id == GroupRow.id)
            .join(GroupMemberRow, GroupMemberRow.group_id == GroupRow.id)
            .where(mine.user_id == user_id)
            .group_by(GroupRow.id)
            .order_by(GroupRow.created_at, GroupRow.id)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            GroupSummary(
                id=row.id,
                name=row.name,
                token=row.token,
                created_by=row.created_by,
                created_at=row.created_at,
                member_count=int(count),
            )
            for row, count in rows
        ]

    async def get_group(self, group_id: int) -> Optional[Group]:
        async with self._session_factory() as session:
            row = await session.get(GroupRow, group_id)
            return _group(row) if row else None

    async def get_group_by_token(self, token: str) -> Optional[Group]:
        async with self._session_factory() as session:
            row = await session.scalar(select(GroupRow).where(GroupRow.token == token))
            return _group(row) if row else None

    async def create_group(self, name: str, created_by: int) -> Group:
        for attempt in range(1, TOKEN_ATTEMPTS + 1):
            async with self._session_factory() as session:
                row = GroupRow(name=name, token=self._token_factory(), created_by=created_by)
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.warning(
                        "Group token collision (attempt %d/%d)", attempt, TOKEN_ATTEMPTS,
                    )
                    continue
                logger.info("Group created", extra={"group_id": row.id, "user_id": created_by})
                return _group(row)
        raise GroupSOSError(
            "Could not allocate a unique group token",
            error_code="TOKEN_EXHAUSTED",
        )

    async def add_member(self, group_id: int, user_id: int) -> None:
        async with self._session_factory() as session:
            session.add(GroupMemberRow(group_id=group_id, user_id=user_id))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise AlreadyMember(group_id) from exc

    async def is_member(self, user_id: int, group_id: int) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(
                select(GroupMemberRow.id).where(
                    GroupMemberRow.user_id == user_id,
                    GroupMemberRow.group_id == group_id,
                )
            )
            return found is not None


# ═══════════════════════════════════════════════════════════════════════════
# Alert Ledger
# ═══════════════════════════════════════════════════════════════════════════

class SqlAlertLedger(_Repository):

    async def create(
        self,
        group_id: int,
        sender_id: int,
        kind: AlertKind,
        location: Optional[Location],
        message: str,
    ) -> Alert:
        async with self._session_factory() as session:
            row = AlertRow(
                group_id=group_id,
                sender_id=sender_id,
                message=message,
                type=kind.value,
                latitude=location.latitude if location else None,
                longitude=location.longitude if location else None,
                location_accuracy=location.accuracy if location else None,
            )
            session.add(row)
            await session.commit()
            return _alert(row)

    async def get(self, alert_id: int) -> Optional[Alert]:
        async with self._session_factory() as session:
            row = await session.get(AlertRow, alert_id)
            return _alert(row) if row else None

    async def mark_answered(self, alert_id: int, answerer_id: int) -> Alert:
        async with self._session_factory() as session:
            result = await session.execute(
                update(AlertRow)
                .where(AlertRow.id == alert_id, AlertRow.answered_by.is_(None))
                .values(answered_by=answerer_id, answered_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            updated = result.rowcount
            await session.commit()
            row = await session.get(AlertRow, alert_id, populate_existing=True)

        if row is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        if updated == 0:
            raise AlreadyAnswered(alert_id)
        return _alert(row)

    async def archive(self, user_id: int, alert_id: int) -> ArchivalMark:
        async with self._session_factory() as session:
            row = ArchivedAlertRow(user_id=user_id, alert_id=alert_id)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise AlreadyArchived(alert_id) from exc
            return ArchivalMark(
                user_id=row.user_id,
                alert_id=row.alert_id,
                archived_at=row.archived_at,
            )

    async def is_archived(self, user_id: int, alert_id: int) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(
                select(ArchivedAlertRow.id).where(
                    ArchivedAlertRow.user_id == user_id,
                    ArchivedAlertRow.alert_id == alert_id,
                )
            )
            return found is not None

    def _details_query(self):
        sender = aliased(UserRow)
        answerer = aliased(UserRow)
        return (
            select(AlertRow, sender.nickname, GroupRow.name, answerer.nickname)
            .join(sender, sender.id == AlertRow.sender_id)
            .join(GroupRow, GroupRow.id == AlertRow.group_id)
            .outerjoin(answerer, answerer.id == AlertRow.answered_by)
        )

    async def _fetch_details(self, stmt) -> List[AlertDetails]:
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            AlertDetails(
                alert=_alert(row),
                sender_name=sender_name,
                group_name=group_name,
                answered_by_name=answered_by_name,
            )
            for row, sender_name, group_name, answered_by_name in rows
        ]

    async def group_alerts(self, user_id: int, limit: int) -> List[AlertDetails]:
        member_groups = select(GroupMemberRow.group_id).where(GroupMemberRow.user_id == user_id)
        archived = select(ArchivedAlertRow.alert_id).where(ArchivedAlertRow.user_id == user_id)
        stmt = (
            self._details_query()
            .where(AlertRow.group_id.in_(member_groups), AlertRow.id.not_in(archived))
            .order_by(AlertRow.sent_at.desc(), AlertRow.id.desc())
            .limit(limit)
        )
        return await self._fetch_details(stmt)

    async def archived_alerts(self, user_id: int, limit: int) -> List[AlertDetails]:
        stmt = (
            self._details_query()
            .join(ArchivedAlertRow, ArchivedAlertRow.alert_id == AlertRow.id)
            .where(ArchivedAlertRow.user_id == user_id)
            .order_by(AlertRow.sent_at.desc(), AlertRow.id.desc())
            .limit(limit)
        )
        return await self._fetch_details(stmt)
