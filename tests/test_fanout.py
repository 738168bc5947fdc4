"""
test_fanout.py — Per-member delivery decisions and group broadcast.

Covers:
    • Live delivery to connected members
    • Push fallback for offline members, never both channels
    • Skip reasons (sender, not_emergency, no_subscription, push_disabled)
    • Permanent push failure clears the subscription; transient keeps it
    • A slow or broken live connection falls through to push
    • One member's failure never affects the others

Run with:
    pytest tests/test_fanout.py -v
"""

from __future__ import annotations

import pytest

from groupsos.alerts.channels.web_push import PushResult, PushStatus
from groupsos.alerts.fanout import FanoutEngine, summarize
from groupsos.alerts.models import (
    EMERGENCY_MESSAGE,
    AlertDetails,
    AlertKind,
    DeliveryOutcome,
    Location,
)
from groupsos.realtime.messages import AlertEvent, MessageType

from fakes import FakeConnection, FakePush, make_group, make_user, subscription_for


async def _emergency(store, sender, group, location=None) -> AlertEvent:
    alert = await store.create(group.id, sender.id, AlertKind.EMERGENCY, location, EMERGENCY_MESSAGE)
    return AlertEvent.created(AlertDetails(alert, sender.nickname, group.name))


def _engine(store, registry, push, timeout=0.2) -> FanoutEngine:
    return FanoutEngine(store, store, registry, push, send_timeout=timeout)


class TestLiveDelivery:

    @pytest.mark.asyncio
    async def test_connected_members_receive_event(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob")
        group = await make_group(store, "Family", alice, bob)
        conn_a, conn_b = FakeConnection("a"), FakeConnection("b")
        registry.register(alice.id, conn_a)
        registry.register(bob.id, conn_b)

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.total_members == 2
        assert report.count(DeliveryOutcome.LIVE_SENT) == 2
        assert conn_b.sent == [event.to_payload()]
        assert conn_b.sent[0]["type"] == "alert"
        assert conn_b.sent[0]["alert"]["senderName"] == "Alice"
        assert conn_b.sent[0]["alert"]["groupName"] == "Family"
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_sender_gets_live_event_when_connected(self, store, registry, push):
        alice = await make_user(store, "Alice", subscribed=True)
        group = await make_group(store, "Solo", alice)
        conn = FakeConnection()
        registry.register(alice.id, conn)

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(alice.id).outcome == DeliveryOutcome.LIVE_SENT
        assert conn.types() == ["alert"]
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_live_member_with_subscription_is_not_pushed(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)
        registry.register(bob.id, FakeConnection())

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).outcome == DeliveryOutcome.LIVE_SENT
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_location_travels_as_strings(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob")
        group = await make_group(store, "Family", alice, bob)
        conn = FakeConnection()
        registry.register(bob.id, conn)

        location = Location.from_values("37.7749", "-122.4194", "12.5")
        event = await _emergency(store, alice, group, location)
        await _engine(store, registry, push).broadcast(group.id, event)

        alert = conn.sent[0]["alert"]
        assert alert["latitude"] == "37.7749"
        assert alert["longitude"] == "-122.4194"
        assert alert["locationAccuracy"] == "12.5"


class TestPushFallback:

    @pytest.mark.asyncio
    async def test_offline_subscribed_member_is_pushed(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).outcome == DeliveryOutcome.PUSH_SENT
        assert push.descriptors() == [subscription_for("bob")]
        payload = push.calls[0][1]
        assert "Alice" in payload["body"]
        assert payload["data"]["alertId"] == event.alert_id

    @pytest.mark.asyncio
    async def test_closed_connection_counts_as_offline(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)
        conn = FakeConnection(open=False)
        registry.register(bob.id, conn)

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).outcome == DeliveryOutcome.PUSH_SENT
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_failed_live_send_falls_through_to_push(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)
        registry.register(bob.id, FakeConnection(fail=True))

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).outcome == DeliveryOutcome.PUSH_SENT
        assert len(push.calls) == 1

    @pytest.mark.asyncio
    async def test_slow_live_send_times_out_and_falls_through(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        carol = await make_user(store, "Carol")
        group = await make_group(store, "Family", alice, bob, carol)
        registry.register(bob.id, FakeConnection("slow", delay=1.0))
        fast = FakeConnection("fast")
        registry.register(carol.id, fast)

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push, timeout=0.05).broadcast(group.id, event)

        assert report.for_user(bob.id).outcome == DeliveryOutcome.PUSH_SENT
        assert report.for_user(carol.id).outcome == DeliveryOutcome.LIVE_SENT
        assert fast.types() == ["alert"]


class TestSkipReasons:

    @pytest.mark.asyncio
    async def test_offline_sender_is_never_pushed(self, store, registry, push):
        alice = await make_user(store, "Alice", subscribed=True)
        group = await make_group(store, "Solo", alice)

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        delivery = report.for_user(alice.id)
        assert delivery.outcome == DeliveryOutcome.PUSH_SKIPPED
        assert delivery.reason == "sender"
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_answered_event_is_not_pushed(self, store, registry, push):
        alice = await make_user(store, "Alice", subscribed=True)
        bob = await make_user(store, "Bob")
        group = await make_group(store, "Family", alice, bob)
        alert = await store.create(group.id, alice.id, AlertKind.EMERGENCY, None, EMERGENCY_MESSAGE)
        answered = await store.mark_answered(alert.id, bob.id)
        event = AlertEvent.answered(AlertDetails(answered, "Alice", "Family", "Bob"))

        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert event.type == MessageType.ALERT_ANSWERED
        assert report.for_user(alice.id).reason == "not_emergency"
        assert report.for_user(bob.id).reason == "not_emergency"
        assert push.calls == []

    @pytest.mark.asyncio
    async def test_resolved_kind_is_not_pushed(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)
        alert = await store.create(group.id, alice.id, AlertKind.RESOLVED, None, "All clear")
        event = AlertEvent.created(AlertDetails(alert, "Alice", "Family"))

        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).reason == "not_emergency"

    @pytest.mark.asyncio
    async def test_member_without_subscription(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob")
        group = await make_group(store, "Family", alice, bob)

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).outcome == DeliveryOutcome.PUSH_SKIPPED
        assert report.for_user(bob.id).reason == "no_subscription"

    @pytest.mark.asyncio
    async def test_push_disabled(self, store, registry):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)

        engine = _engine(store, registry, None)
        event = await _emergency(store, alice, group)
        report = await engine.broadcast(group.id, event)

        assert engine.push_enabled is False
        assert report.for_user(bob.id).reason == "push_disabled"


class TestPushFailures:

    @pytest.mark.asyncio
    async def test_permanent_failure_clears_subscription(self, store, registry):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)
        push = FakePush({
            subscription_for("bob"): PushResult(PushStatus.PERMANENT_FAILURE, status_code=410),
        })

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        delivery = report.for_user(bob.id)
        assert delivery.outcome == DeliveryOutcome.PUSH_FAILED
        assert delivery.reason == "permanent"
        assert (await store.get_user(bob.id)).push_subscription is None

        # Next broadcast does not try the dead endpoint again
        second = await _engine(store, registry, push).broadcast(group.id, await _emergency(store, alice, group))
        assert second.for_user(bob.id).reason == "no_subscription"
        assert len(push.calls) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_subscription(self, store, registry):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        group = await make_group(store, "Family", alice, bob)
        push = FakePush({
            subscription_for("bob"): PushResult(PushStatus.TRANSIENT_FAILURE, status_code=503),
        })

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).reason == "transient"
        assert (await store.get_user(bob.id)).push_subscription == subscription_for("bob")
        assert len(push.calls) == 1

    @pytest.mark.asyncio
    async def test_exception_for_one_member_does_not_abort_others(self, store, registry):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        carol = await make_user(store, "Carol", subscribed=True)
        dave = await make_user(store, "Dave")
        group = await make_group(store, "Family", alice, bob, carol, dave)
        dave_conn = FakeConnection()
        registry.register(dave.id, dave_conn)
        push = FakePush({subscription_for("bob"): RuntimeError("push service exploded")})

        event = await _emergency(store, alice, group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.for_user(bob.id).outcome == DeliveryOutcome.PUSH_FAILED
        assert report.for_user(bob.id).reason == "error"
        assert report.for_user(carol.id).outcome == DeliveryOutcome.PUSH_SENT
        assert report.for_user(dave.id).outcome == DeliveryOutcome.LIVE_SENT
        assert dave_conn.types() == ["alert"]
        assert report.reached == 2


class TestReport:

    @pytest.mark.asyncio
    async def test_every_member_gets_exactly_one_record(self, store, registry, push):
        users = [await make_user(store, name) for name in ("Alice", "Bob", "Carol")]
        group = await make_group(store, "Family", *users)
        registry.register(users[1].id, FakeConnection())

        event = await _emergency(store, users[0], group)
        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert sorted(d.user_id for d in report.deliveries) == sorted(u.id for u in users)
        assert report.completed_at is not None
        d = report.to_dict()
        assert d["total_members"] == 3
        assert d["outcomes"]["live_sent"] == 1
        assert d["outcomes"]["push_skipped"] == 2

    @pytest.mark.asyncio
    async def test_empty_group(self, store, registry, push):
        alice = await make_user(store, "Alice")
        group = await store.create_group("Empty", alice.id)
        alert = await store.create(group.id, alice.id, AlertKind.EMERGENCY, None, EMERGENCY_MESSAGE)
        event = AlertEvent.created(AlertDetails(alert, "Alice", "Empty"))

        report = await _engine(store, registry, push).broadcast(group.id, event)

        assert report.total_members == 0
        assert report.reached == 0

    @pytest.mark.asyncio
    async def test_summarize_totals_across_reports(self, store, registry, push):
        alice = await make_user(store, "Alice")
        bob = await make_user(store, "Bob", subscribed=True)
        g1 = await make_group(store, "One", alice, bob)
        g2 = await make_group(store, "Two", alice, bob)
        engine = _engine(store, registry, push)

        reports = [
            await engine.broadcast(g1.id, await _emergency(store, alice, g1)),
            await engine.broadcast(g2.id, await _emergency(store, alice, g2)),
        ]

        totals = summarize(reports)
        assert totals["push_sent"] == 2
        assert totals["push_skipped"] == 2
        assert totals["live_sent"] == 0
