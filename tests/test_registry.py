"""
test_registry.py — Connection registry semantics.

Covers:
    • Register / lookup / unregister
    • Supersession (last authenticated connection wins)
    • Stale close of a superseded connection is a no-op
    • Concurrent registration from several threads

Run with:
    pytest tests/test_registry.py -v
"""

from __future__ import annotations

import threading

from groupsos.realtime.registry import ConnectionRegistry

from fakes import FakeConnection


class TestRegisterAndLookup:

    def test_lookup_unknown_user(self, registry):
        assert registry.lookup(1) is None

    def test_register_then_lookup(self, registry):
        conn = FakeConnection("c1")
        assert registry.register(1, conn) is None
        assert registry.lookup(1) is conn
        assert registry.count() == 1
        assert len(registry) == 1

    def test_registering_same_handle_twice_reports_nothing_superseded(self, registry):
        conn = FakeConnection("c1")
        registry.register(1, conn)
        assert registry.register(1, conn) is None
        assert registry.lookup(1) is conn

    def test_users_are_independent(self, registry):
        a, b = FakeConnection("a"), FakeConnection("b")
        registry.register(1, a)
        registry.register(2, b)
        assert registry.lookup(1) is a
        assert registry.lookup(2) is b

    def test_clear(self, registry):
        registry.register(1, FakeConnection())
        registry.clear()
        assert registry.lookup(1) is None
        assert len(registry) == 0


class TestSupersession:

    def test_last_registration_wins(self, registry):
        c1, c2 = FakeConnection("c1"), FakeConnection("c2")
        registry.register(1, c1)
        superseded = registry.register(1, c2)
        assert superseded is c1
        assert registry.lookup(1) is c2

    def test_superseded_handle_is_not_closed_by_registry(self, registry):
        c1, c2 = FakeConnection("c1"), FakeConnection("c2")
        registry.register(1, c1)
        registry.register(1, c2)
        assert c1.is_open

    def test_stale_unregister_keeps_newer_connection(self, registry):
        c1, c2 = FakeConnection("c1"), FakeConnection("c2")
        registry.register(1, c1)
        registry.register(1, c2)

        assert registry.unregister(1, c1) is False
        assert registry.lookup(1) is c2

        assert registry.unregister(1, c2) is True
        assert registry.lookup(1) is None

    def test_unregister_unknown_user(self, registry):
        assert registry.unregister(42, FakeConnection()) is False

    def test_unregister_twice(self, registry):
        conn = FakeConnection()
        registry.register(1, conn)
        assert registry.unregister(1, conn) is True
        assert registry.unregister(1, conn) is False


class TestThreadSafety:

    def test_concurrent_registrations_leave_one_entry_per_user(self):
        registry = ConnectionRegistry()
        handles = {i: FakeConnection(f"c{i}") for i in range(200)}

        def worker(start: int):
            for i in range(start, 200, 4):
                registry.register(i % 10, handles[i])

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 10
        for user_id in range(10):
            assert registry.lookup(user_id) in handles.values()
