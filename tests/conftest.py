"""Shared fixtures; the fakes themselves live in fakes.py."""

from __future__ import annotations

import pytest

from groupsos.core.config import Settings
from groupsos.realtime.registry import ConnectionRegistry
from groupsos.services import Services, build_memory_services
from groupsos.storage.memory import InMemoryStore

from fakes import FakePush


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL="memory://",
        WS_AUTH_TIMEOUT_SECONDS=0.5,
        WS_SEND_TIMEOUT_SECONDS=0.2,
        VAPID_PUBLIC_KEY=None,
        VAPID_PRIVATE_KEY=None,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def push() -> FakePush:
    return FakePush()


@pytest.fixture
def services(test_settings, store, registry, push) -> Services:
    return build_memory_services(test_settings, push, store, registry)
