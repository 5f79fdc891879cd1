"""Unit tests for bounded-time store calls."""

from __future__ import annotations

import threading
from unittest.mock import Mock

import pytest

from attendface.exceptions import PersistenceFailure
from attendface.io_guard import IOGuard


@pytest.fixture
def guard():
    guard = IOGuard(timeout=0.2)
    yield guard
    guard.shutdown()


def test_call_returns_result(guard):
    assert guard.call(lambda a, b: a + b, 2, 3, what="add") == 5


def test_call_wraps_errors(guard):
    """Store exceptions surface as PersistenceFailure."""
    failing = Mock(side_effect=OSError("disk full"))

    with pytest.raises(PersistenceFailure, match="upsert failed: disk full"):
        guard.call(failing, what="upsert")


def test_call_passes_persistence_failure_through(guard):
    failing = Mock(side_effect=PersistenceFailure("already wrapped"))

    with pytest.raises(PersistenceFailure, match="already wrapped"):
        guard.call(failing)


def test_call_times_out(guard):
    """A hung store call is abandoned after the timeout."""
    release = threading.Event()

    with pytest.raises(PersistenceFailure, match="timed out"):
        guard.call(release.wait, 5.0, what="slow insert")

    release.set()


def test_submit_does_not_raise(guard):
    """Background failures are logged, never raised to the caller."""
    failing = Mock(side_effect=OSError("log table missing"))

    future = guard.submit(failing, "entry", what="audit append")

    assert guard.flush()
    failing.assert_called_once_with("entry")
    assert isinstance(future.exception(), OSError)


def test_flush_waits_for_pending(guard):
    """flush() waits for background calls submitted so far."""
    done = []
    guard.submit(done.append, 1)
    guard.submit(done.append, 2)

    assert guard.flush()
    assert sorted(done) == [1, 2]


def test_flush_reports_unfinished(guard):
    """flush() returns False when calls are still running."""
    release = threading.Event()
    guard.submit(release.wait, 5.0)

    assert guard.flush(timeout=0.05) is False

    release.set()
    assert guard.flush()


def test_invalid_timeout():
    with pytest.raises(ValueError):
        IOGuard(timeout=0)
