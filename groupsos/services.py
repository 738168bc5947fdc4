"""
Application wiring — builds the object graph the routes depend on.

    stores ──▶ FanoutEngine ──▶ AlertService
      │             ▲
      │        ConnectionRegistry ◀── ConnectionAuthenticator (/ws)
      └──▶ GroupService

``DATABASE_URL=memory://`` selects the in-process store, which is handy
for local demos; anything else is handed to SQLAlchemy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from groupsos.alerts.alert_service import AlertService
from groupsos.alerts.channels.web_push import PushDispatcher, WebPushDispatcher
from groupsos.alerts.fanout import FanoutEngine
from groupsos.core.config import Settings, settings as default_settings
from groupsos.groups.service import GroupService
from groupsos.realtime.protocol import ConnectionAuthenticator
from groupsos.realtime.registry import ConnectionRegistry
from groupsos.storage.interfaces import AlertLedger, MembershipStore, SessionStore
from groupsos.storage.memory import InMemoryStore

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"


@dataclass
class Services:
    settings: Settings
    sessions: SessionStore
    memberships: MembershipStore
    ledger: AlertLedger
    registry: ConnectionRegistry
    push: Optional[PushDispatcher]
    fanout: FanoutEngine
    alerts: AlertService
    groups: GroupService
    authenticator: ConnectionAuthenticator
    uses_database: bool = False


def build_services(
    sessions: SessionStore,
    memberships: MembershipStore,
    ledger: AlertLedger,
    *,
    settings: Optional[Settings] = None,
    push: Optional[PushDispatcher] = None,
    registry: Optional[ConnectionRegistry] = None,
    uses_database: bool = False,
) -> Services:
    settings = settings or default_settings
    if registry is None:
        registry = ConnectionRegistry()
    fanout = FanoutEngine(
        memberships, sessions, registry, push,
        send_timeout=settings.WS_SEND_TIMEOUT_SECONDS,
    )
    return Services(
        settings=settings,
        sessions=sessions,
        memberships=memberships,
        ledger=ledger,
        registry=registry,
        push=push,
        fanout=fanout,
        alerts=AlertService(
            sessions, memberships, ledger, fanout,
            recent_limit=settings.RECENT_ALERTS_LIMIT,
            archived_limit=settings.ARCHIVED_ALERTS_LIMIT,
        ),
        groups=GroupService(sessions, memberships),
        authenticator=ConnectionAuthenticator(
            sessions, registry,
            auth_timeout=settings.WS_AUTH_TIMEOUT_SECONDS,
        ),
        uses_database=uses_database,
    )


def build_memory_services(
    settings: Optional[Settings] = None,
    push: Optional[PushDispatcher] = None,
    store: Optional[InMemoryStore] = None,
    registry: Optional[ConnectionRegistry] = None,
) -> Services:
    store = store or InMemoryStore()
    return build_services(
        store, store, store,
        settings=settings, push=push, registry=registry,
    )


def build_sql_services(
    settings: Optional[Settings] = None,
    push: Optional[PushDispatcher] = None,
) -> Services:
    from groupsos.core.database import get_session_factory
    from groupsos.storage.repositories import (
        SqlAlertLedger,
        SqlMembershipStore,
        SqlSessionStore,
    )

    factory = get_session_factory()
    return build_services(
        SqlSessionStore(factory),
        SqlMembershipStore(factory),
        SqlAlertLedger(factory),
        settings=settings,
        push=push,
        uses_database=True,
    )


def build_default_services(settings: Optional[Settings] = None) -> Services:
    settings = settings or default_settings
    push = WebPushDispatcher.from_settings(settings)
    if settings.DATABASE_URL == MEMORY_URL:
        logger.warning("Using in-memory store — data is lost on restart")
        return build_memory_services(settings, push)
    return build_sql_services(settings, push)
