"""Unit tests for the linear-scan match engine and vector helpers."""

from __future__ import annotations

from unittest.mock import Mock

import numpy as np
import pytest

from attendface.exceptions import DimensionMismatch
from attendface.io_guard import IOGuard
from attendface.matcher import MatchEngine
from attendface.stores import MemoryRecognitionLog
from attendface.utils import cosine_similarity, l2_normalize

from conftest import FIXED_NOW, make_template, unit


@pytest.fixture
def audit_log():
    return MemoryRecognitionLog()


@pytest.fixture
def engine(audit_log, fixed_clock):
    return MatchEngine(
        threshold=0.65,
        audit_log=audit_log,
        device_descriptor="lobby-1",
        clock=fixed_clock,
    )


@pytest.fixture
def gallery():
    """Three identities on orthogonal axes."""
    return {
        "alice": make_template("alice", unit(0)),
        "bob": make_template("bob", unit(1)),
        "carol": make_template("carol", unit(2)),
    }


def test_cosine_identities():
    """Self, opposite and orthogonal vectors give 1, -1 and 0."""
    rng = np.random.default_rng(7)
    v = rng.normal(size=352)

    assert cosine_similarity(v, v) == pytest.approx(1.0)
    assert cosine_similarity(v, -v) == pytest.approx(-1.0)
    assert cosine_similarity(unit(0), unit(1)) == pytest.approx(0.0)


def test_cosine_zero_vector():
    """A zero vector has similarity 0 with anything."""
    assert cosine_similarity(np.zeros(8), np.ones(8)) == 0.0


def test_cosine_dimension_mismatch():
    """Vectors of different lengths are rejected."""
    with pytest.raises(DimensionMismatch):
        cosine_similarity(np.ones(352), np.ones(128))


def test_dimension_mismatch_is_value_error():
    """Callers catching ValueError also see dimension errors."""
    assert issubclass(DimensionMismatch, ValueError)


def test_l2_normalize():
    """Normalization gives unit length and leaves zero alone."""
    assert np.linalg.norm(l2_normalize(np.array([3.0, 4.0]))) == pytest.approx(1.0)
    np.testing.assert_array_equal(l2_normalize(np.zeros(4)), np.zeros(4))


def test_exact_match(engine, gallery):
    """e0 against itself matches with similarity and confidence 1."""
    result = engine.match(unit(0), gallery)

    assert result.matched
    assert result.identity == "alice"
    assert result.score == pytest.approx(1.0)
    assert result.confidence == pytest.approx(1.0)


def test_best_candidate_wins(engine, gallery):
    """The identity with the highest similarity is chosen."""
    probe = l2_normalize(np.array(unit(1)) * 0.9 + np.array(unit(0)) * 0.3)

    result = engine.match(probe, gallery)

    assert result.identity == "bob"
    assert result.best_candidate == "bob"


def test_score_equal_to_threshold_matches(audit_log, fixed_clock):
    """The threshold is inclusive."""
    probe = np.array([0.6, 0.8], dtype=np.float64)
    template = make_template("alice", np.array([1.0, 0.0]))
    score = cosine_similarity(probe, template.embedding)
    engine = MatchEngine(threshold=score, audit_log=audit_log, clock=fixed_clock)

    result = engine.match(probe, {"alice": template})

    assert result.matched
    assert result.identity == "alice"


def test_below_threshold_not_matched(engine, gallery):
    """A weak best candidate is reported but not matched."""
    probe = l2_normalize(np.array(unit(0)) + np.array(unit(1)))  # 0.707 to alice and bob
    probe = l2_normalize(probe + np.array(unit(3)) * 0.8)

    result = engine.match(probe, gallery)

    assert not result.matched
    assert result.identity is None
    assert result.best_candidate in ("alice", "bob")
    assert result.score < 0.65


def test_tie_keeps_first_identity(engine):
    """Equal scores keep the first identity in gallery order."""
    gallery = {
        "zed": make_template("zed", unit(0)),
        "amy": make_template("amy", unit(0)),
    }

    result = engine.match(unit(0), gallery)

    assert result.identity == "zed"


def test_empty_gallery(engine, audit_log):
    """An empty gallery gives no match, score 0 and a failed audit entry."""
    result = engine.match(unit(0), {})

    assert not result.matched
    assert result.identity is None
    assert result.best_candidate is None
    assert result.score == 0.0

    assert len(audit_log) == 1
    entry = audit_log.entries[0]
    assert not entry.success
    assert entry.identity is None
    assert entry.similarity_score == 0.0


def test_negative_best_score(engine):
    """A non-empty gallery can produce a negative best score."""
    result = engine.match(-unit(0), {"alice": make_template("alice", unit(0))})

    assert result.score == pytest.approx(-1.0)
    assert result.best_candidate == "alice"
    assert result.confidence == 0.0
    assert not result.matched


def test_every_attempt_is_audited(engine, gallery, audit_log):
    """Audit entries carry the attempt, score, outcome and device."""
    engine.match(unit(0), gallery)
    engine.match(unit(5), gallery)

    entries = audit_log.entries
    assert [e.success for e in entries] == [True, False]
    assert entries[0].identity == "alice"
    assert entries[0].device_descriptor == "lobby-1"
    assert entries[0].timestamp == FIXED_NOW
    np.testing.assert_array_equal(entries[1].attempted_embedding, unit(5))


def test_search_does_not_audit(engine, gallery, audit_log):
    """search() only scores; match() also records."""
    engine.search(unit(0), gallery)
    assert len(audit_log) == 0


def test_audit_failure_does_not_break_matching(gallery, fixed_clock):
    """A failing audit log is logged, the match result still returns."""
    failing_log = Mock()
    failing_log.append.side_effect = OSError("disk full")
    engine = MatchEngine(threshold=0.65, audit_log=failing_log, clock=fixed_clock)

    result = engine.match(unit(0), gallery)

    assert result.matched
    failing_log.append.assert_called_once()


def test_background_audit_via_io_guard(gallery, audit_log, fixed_clock):
    """With an IOGuard the audit write runs in the background."""
    guard = IOGuard(timeout=1.0)
    engine = MatchEngine(threshold=0.65, audit_log=audit_log, io_guard=guard, clock=fixed_clock)

    try:
        engine.match(unit(1), gallery)
        assert guard.flush()
    finally:
        guard.shutdown()

    assert len(audit_log) == 1
    assert audit_log.entries[0].identity == "bob"


def test_gallery_dimension_mismatch(engine):
    """Templates of another dimension fail fast."""
    gallery = {"alice": make_template("alice", np.ones(128))}

    with pytest.raises(DimensionMismatch):
        engine.match(unit(0), gallery)


def test_set_threshold(engine):
    """Threshold updates are validated."""
    engine.set_threshold(0.8)
    assert engine.threshold == 0.8

    with pytest.raises(ValueError):
        engine.set_threshold(1.5)


def test_invalid_threshold():
    """Out-of-range thresholds are rejected at construction."""
    with pytest.raises(ValueError):
        MatchEngine(threshold=-0.1)
