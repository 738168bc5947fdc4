"""
Session bootstrap and group membership operations.

A user exists once a session id has been seen by ``ensure_user``. The
nickname starts as "Anonymous" and is replaced whenever the user creates
or joins a group, so members always see the name typed most recently.
Joining is by the group's 8-character invite token, matched after
trimming and upper-casing what the user typed.
"""

from __future__ import annotations

import logging
import secrets
from typing import List, Optional, Tuple

from groupsos.alerts.models import Group, GroupSummary, Member, User
from groupsos.core.errors import NotFoundError, NotFoundOrForbidden, ValidationError
from groupsos.core.tokens import is_well_formed_token
from groupsos.storage.interfaces import MembershipStore, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_NICKNAME = "Anonymous"
MAX_GROUP_NAME = 30
MAX_NICKNAME = 20


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def normalize_token(token: str) -> str:
    return token.strip().upper()


def _clean(value: str, field: str, max_length: int) -> str:
    cleaned = value.strip()
    if not cleaned or len(cleaned) > max_length:
        raise ValidationError(
            f"{field} must be 1-{max_length} characters",
            field=field,
        )
    return cleaned


class GroupService:
    def __init__(self, sessions: SessionStore, memberships: MembershipStore):
        self._sessions = sessions
        self._memberships = memberships

    async def ensure_user(self, session_id: Optional[str] = None) -> Tuple[User, str]:
        """Get or create the user behind ``session_id``, minting one if absent."""
        session_id = session_id or new_session_id()
        user = await self._sessions.resolve(session_id)
        if user is None:
            user = await self._sessions.create_user(DEFAULT_NICKNAME, session_id)
            logger.info("New user %s", user.id, extra={"user_id": user.id})
        return user, session_id

    async def create_group(self, user_id: int, name: str, nickname: str) -> Group:
        name = _clean(name, "name", MAX_GROUP_NAME)
        nickname = _clean(nickname, "nickname", MAX_NICKNAME)

        await self._sessions.update_nickname(user_id, nickname)
        group = await self._memberships.create_group(name, user_id)
        await self._memberships.add_member(group.id, user_id)
        logger.info(
            "Group %s created by user %s", group.id, user_id,
            extra={"user_id": user_id, "group_id": group.id},
        )
        return group

    async def join_group(self, user_id: int, token: str, nickname: str) -> Group:
        """
        Join the group with invite ``token``.

        Raises NotFoundError for an unknown token and AlreadyMember when
        the user is in the group already. The nickname is only changed
        once the token is known to be valid.
        """
        token = normalize_token(token)
        nickname = _clean(nickname, "nickname", MAX_NICKNAME)

        group = (
            await self._memberships.get_group_by_token(token)
            if is_well_formed_token(token) else None
        )
        if group is None:
            raise NotFoundError("Group", token=token)

        await self._memberships.add_member(group.id, user_id)
        await self._sessions.update_nickname(user_id, nickname)
        logger.info(
            "User %s joined group %s", user_id, group.id,
            extra={"user_id": user_id, "group_id": group.id},
        )
        return group

    async def list_groups(self, user_id: int) -> List[GroupSummary]:
        return await self._memberships.groups_of(user_id)

    async def list_members(self, user_id: int, group_id: int) -> List[Member]:
        if not await self._memberships.is_member(user_id, group_id):
            raise NotFoundOrForbidden("Group", group_id=group_id)
        return await self._memberships.members_of(group_id)
