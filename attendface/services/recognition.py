"""Recognition service for attendance scanning.

This module combines face analysis, liveness, matching and the attendance
decision into the per-frame step a scanning station runs:

    analyze -> confidence gate -> liveness -> match (audited) -> attendance
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

import numpy as np

from attendface.attendance import AttendanceDecision, AttendanceOutcome
from attendface.interfaces import (
    Detected,
    FaceAnalyzer,
    Gallery,
    IdentityStore,
    MatchResult,
)
from attendface.liveness import LivenessEvaluator, LivenessResult, LivenessSession
from attendface.logging_config import get_logger
from attendface.matcher import MatchEngine

logger = get_logger(__name__)


class ScanStatus(enum.Enum):
    """What happened to a frame during scanning."""

    NO_FACE = "no_face"
    LOW_CONFIDENCE = "low_confidence"
    NOT_LIVE = "not_live"
    NO_MATCH = "no_match"
    MATCHED = "matched"


@dataclass(frozen=True)
class ScanResult:
    """Result of scanning a single frame.

    Attributes:
        status: Outcome of the frame
        message: Human readable status
        match: Match result, when matching ran
        liveness: Liveness verdict, when a face was detected
        attendance: Attendance outcome for a MATCHED frame
        display_name: Resolved name of the matched identity
    """

    status: ScanStatus
    message: str
    match: Optional[MatchResult] = None
    liveness: Optional[LivenessResult] = None
    attendance: Optional[AttendanceOutcome] = None
    display_name: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.status is ScanStatus.MATCHED

    def __repr__(self) -> str:
        """String representation."""
        score = f", score={self.match.score:.3f}" if self.match is not None else ""
        return f"ScanResult(status={self.status.value}{score}, message='{self.message}')"


class RecognitionService:
    """Per-frame attendance recognition.

    Attributes:
        analyzer: Face analyzer backend
        liveness: Liveness evaluator
        matcher: Match engine (threshold and audit log)
        attendance: Attendance decision
        identities: Optional display-name lookup
        min_confidence: Detection confidence required before matching
        require_live: Skip matching when liveness is not confirmed

    Example:
        >>> service = RecognitionService(analyzer, LivenessEvaluator(), engine, decision)
        >>> session = service.liveness.new_session()
        >>> result = service.process_frame(frame, session, template_store.get_all())
        >>> if result.matched:
        ...     print(f"Welcome, {result.display_name}")
    """

    def __init__(
        self,
        analyzer: FaceAnalyzer,
        liveness: LivenessEvaluator,
        matcher: MatchEngine,
        attendance: AttendanceDecision,
        identities: Optional[IdentityStore] = None,
        min_confidence: float = 0.85,
        require_live: bool = True,
    ):
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {min_confidence}")

        self.analyzer = analyzer
        self.liveness = liveness
        self.matcher = matcher
        self.attendance = attendance
        self.identities = identities
        self.min_confidence = min_confidence
        self.require_live = require_live

        logger.info(
            f"Initialized RecognitionService with threshold={matcher.threshold:.2f}, "
            f"min_confidence={min_confidence:.2f}, require_live={require_live}"
        )

    def _display_name(self, identity: str) -> str:
        if self.identities is None:
            return identity
        try:
            profile = self.identities.get(identity)
        except Exception as e:
            logger.warning(f"Identity lookup failed for '{identity}': {e}")
            return identity
        return profile.full_name if profile is not None else identity

    def process_frame(
        self,
        frame: np.ndarray,
        session: LivenessSession,
        gallery: Gallery,
    ) -> ScanResult:
        """Scan one frame.

        Args:
            frame: Input image in BGR format [H, W, 3]
            session: Liveness history of this scan session
            gallery: Template snapshot of this scan session

        Returns:
            ScanResult for the frame.

        Raises:
            DimensionMismatch: If the gallery holds templates of another
                embedding dimension.
        """
        result = self.analyzer.analyze(frame)

        if not isinstance(result, Detected):
            logger.debug(f"No face: {result.reason}")
            return ScanResult(ScanStatus.NO_FACE, result.reason)

        verdict = self.liveness.evaluate(session, result)

        if result.confidence <= self.min_confidence:
            return ScanResult(
                ScanStatus.LOW_CONFIDENCE,
                f"Low detection confidence ({result.confidence:.2f})",
                liveness=verdict,
            )

        if self.require_live and not verdict.is_live:
            return ScanResult(
                ScanStatus.NOT_LIVE,
                f"Liveness not confirmed ({verdict.score:.2f})",
                liveness=verdict,
            )

        match = self.matcher.match(result.embedding, gallery)

        if not match.matched:
            return ScanResult(
                ScanStatus.NO_MATCH,
                f"No match found (best {match.score:.1%})",
                match=match,
                liveness=verdict,
            )

        name = self._display_name(match.identity)
        outcome = self.attendance.record(match.identity, match.confidence)

        if outcome.already_recorded:
            message = f"{name}: attendance already recorded at {outcome.event.timestamp:%H:%M}"
        elif outcome.pending:
            message = f"{name}: recognized, attendance pending ({outcome.error})"
        else:
            message = f"{name}: attendance recorded"

        logger.info(f"{message} (score={match.score:.3f})")

        return ScanResult(
            ScanStatus.MATCHED,
            message,
            match=match,
            liveness=verdict,
            attendance=outcome,
            display_name=name,
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"RecognitionService(threshold={self.matcher.threshold:.2f}, "
            f"min_confidence={self.min_confidence:.2f})"
        )
