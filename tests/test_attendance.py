"""Unit tests for the attendance decision and day policy."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import DEFAULT, Mock
from zoneinfo import ZoneInfo

import pytest

from attendface.attendance import AttendanceDecision, AttendanceStatus, DayPolicy
from attendface.exceptions import PersistenceFailure
from attendface.io_guard import IOGuard
from attendface.stores import MemoryAttendanceStore

from conftest import FIXED_NOW

UTC = timezone.utc


@pytest.fixture
def store():
    return MemoryAttendanceStore()


@pytest.fixture
def decision(store, fixed_clock):
    return AttendanceDecision(
        store,
        device_descriptor="lobby-1",
        day_policy=DayPolicy(tz=UTC),
        clock=fixed_clock,
    )


def test_first_match_records_event(decision, store):
    """The first accepted match of the day is stored."""
    outcome = decision.record("alice", 0.92)

    assert outcome.status is AttendanceStatus.RECORDED
    assert outcome.recorded
    assert outcome.event.identity == "alice"
    assert outcome.event.confidence == pytest.approx(0.92)
    assert outcome.event.device_descriptor == "lobby-1"
    assert outcome.event.timestamp == FIXED_NOW
    assert len(store) == 1


def test_second_match_same_day_is_deduplicated(decision, store):
    """Two decisions in one day give one event and ALREADY_RECORDED."""
    first = decision.record("alice", 0.92)
    second = decision.record("alice", 0.97, when=FIXED_NOW + timedelta(hours=3))

    assert first.recorded
    assert second.status is AttendanceStatus.ALREADY_RECORDED
    assert second.already_recorded
    assert second.event == first.event
    assert len(store) == 1


def test_next_day_records_again(decision, store):
    """A new day starts a new attendance record."""
    decision.record("alice", 0.9)
    outcome = decision.record("alice", 0.9, when=FIXED_NOW + timedelta(days=1))

    assert outcome.recorded
    assert len(store) == 2


def test_identities_are_independent(decision, store):
    """Deduplication is per identity."""
    decision.record("alice", 0.9)
    outcome = decision.record("bob", 0.9)

    assert outcome.recorded
    assert len(store) == 2


def test_confidence_is_clamped(decision):
    """Confidence outside [0, 1] is clamped."""
    assert decision.record("alice", 1.3).event.confidence == 1.0


def test_insert_failure_is_pending(fixed_clock):
    """A failing write reports PENDING with the unsaved event."""
    store = Mock()
    store.find_by_identity_on_day.return_value = None
    store.insert.side_effect = OSError("connection reset")
    decision = AttendanceDecision(store, clock=fixed_clock)

    outcome = decision.record("alice", 0.9)

    assert outcome.pending
    assert outcome.event.identity == "alice"
    assert "connection reset" in outcome.error


def test_lookup_failure_is_pending(fixed_clock):
    """A failing lookup also reports PENDING and writes nothing."""
    store = Mock()
    store.find_by_identity_on_day.side_effect = OSError("timeout")
    decision = AttendanceDecision(store, clock=fixed_clock)

    outcome = decision.record("alice", 0.9)

    assert outcome.pending
    store.insert.assert_not_called()


def test_retry_pending(fixed_clock):
    """A pending outcome can be retried with its original timestamp."""
    store = MemoryAttendanceStore()
    flaky = Mock(wraps=store)
    flaky.insert.side_effect = [OSError("busy"), DEFAULT]
    decision = AttendanceDecision(flaky, day_policy=DayPolicy(tz=UTC), clock=fixed_clock)

    pending = decision.record("alice", 0.9, when=FIXED_NOW - timedelta(minutes=5))
    retried = decision.retry(pending)

    assert pending.pending
    assert retried.recorded
    assert retried.event.timestamp == FIXED_NOW - timedelta(minutes=5)
    assert len(store) == 1


def test_retry_non_pending_is_noop(decision):
    """Retrying a recorded outcome returns it unchanged."""
    outcome = decision.record("alice", 0.9)
    assert decision.retry(outcome) is outcome


def test_naive_times_are_deduplicated(store, fixed_clock):
    """Naive event times are stored as local time and dedup still applies."""
    decision = AttendanceDecision(store, clock=fixed_clock)

    first = decision.record("alice", 0.9, when=datetime(2026, 3, 2, 12, 0))
    second = decision.record("alice", 0.9, when=datetime(2026, 3, 2, 13, 0))

    assert first.recorded
    assert first.event.timestamp.tzinfo is not None
    assert second.status is AttendanceStatus.ALREADY_RECORDED
    assert second.event == first.event
    assert len(store) == 1


def test_find_today(decision):
    """find_today returns the event of the current day."""
    assert decision.find_today("alice") is None
    outcome = decision.record("alice", 0.9)
    assert decision.find_today("alice") == outcome.event


def test_store_calls_through_io_guard(store, fixed_clock):
    """With an IOGuard, store errors still become PENDING."""
    guard = IOGuard(timeout=1.0)
    failing = Mock()
    failing.find_by_identity_on_day.side_effect = OSError("down")
    try:
        decision = AttendanceDecision(failing, io_guard=guard, clock=fixed_clock)
        outcome = decision.record("alice", 0.9)
    finally:
        guard.shutdown()

    assert outcome.pending


def test_day_bounds_midnight():
    """Default policy days run midnight to midnight."""
    start, end = DayPolicy(tz=UTC).bounds(datetime(2026, 3, 2, 17, 45, tzinfo=UTC))

    assert start == datetime(2026, 3, 2, 0, 0, tzinfo=UTC)
    assert end == datetime(2026, 3, 3, 0, 0, tzinfo=UTC)


def test_day_bounds_start_hour():
    """Before the start hour an instant belongs to the previous day."""
    policy = DayPolicy(start_hour=6, tz=UTC)

    start, end = policy.bounds(datetime(2026, 3, 2, 5, 0, tzinfo=UTC))

    assert start == datetime(2026, 3, 1, 6, 0, tzinfo=UTC)
    assert end == datetime(2026, 3, 2, 6, 0, tzinfo=UTC)


def test_day_bounds_timezone():
    """Day boundaries follow the policy timezone, not the instant's."""
    policy = DayPolicy.from_names(0, "Asia/Tokyo")
    when = datetime(2026, 3, 2, 16, 0, tzinfo=UTC)  # 01:00 on March 3 in Tokyo

    start, _ = policy.bounds(when)

    assert start == datetime(2026, 3, 3, 0, 0, tzinfo=ZoneInfo("Asia/Tokyo"))


def test_day_bounds_naive_datetime():
    """Naive datetimes are taken as local time."""
    start, end = DayPolicy().bounds(datetime(2026, 3, 2, 12, 0))

    assert start.tzinfo is not None
    assert end - start == timedelta(days=1)


def test_day_policy_validation():
    """The start hour must be a valid hour."""
    with pytest.raises(ValueError):
        DayPolicy(start_hour=24)


def test_find_today_raises_persistence_failure(fixed_clock):
    """Lookups outside record() surface store errors."""
    store = Mock()
    store.find_by_identity_on_day.side_effect = OSError("down")
    decision = AttendanceDecision(store, clock=fixed_clock)

    with pytest.raises(PersistenceFailure, match="attendance lookup"):
        decision.find_today("alice")
