"""Linear-scan matcher for face identification.

This module compares a live embedding against every enrolled template by
cosine similarity, keeps the single best candidate and applies the
acceptance threshold. Every attempt is written to the recognition audit log.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import numpy as np

from attendface.interfaces import Gallery, MatchResult, RecognitionAuditLog, RecognitionLogEntry
from attendface.io_guard import IOGuard
from attendface.logging_config import get_logger
from attendface.utils import cosine_similarity, now_local

logger = get_logger(__name__)


class MatchEngine:
    """Deterministic best-match search over a gallery of templates.

    The search is a full scan, O(|gallery| x D). Ties keep the first
    identity seen in gallery iteration order.

    Attributes:
        threshold: Minimum similarity for a match (0.0 to 1.0)
        audit_log: Where every attempt is recorded (optional)
        io_guard: Runs audit writes in the background with a timeout
        device_descriptor: Capture station recorded with each attempt

    Example:
        >>> engine = MatchEngine(threshold=0.65, audit_log=audit_log)
        >>> result = engine.match(live_embedding, template_store.get_all())
        >>> if result.matched:
        ...     print(f"{result.identity}: {result.score:.2f}")
    """

    def __init__(
        self,
        threshold: float,
        audit_log: Optional[RecognitionAuditLog] = None,
        io_guard: Optional[IOGuard] = None,
        device_descriptor: str = "",
        clock: Callable[[], datetime] = now_local,
    ):
        """Initialize match engine.

        Args:
            threshold: Similarity threshold for positive identification (0.0 to 1.0)
            audit_log: Recognition audit log, or None to skip auditing
            io_guard: Guard for background audit writes. If None, writes
                run inline and failures are logged.
            device_descriptor: Capture station description
            clock: Source of attempt timestamps

        Raises:
            ValueError: If threshold is not in valid range.
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be in [0, 1], got {threshold}")

        self.threshold = threshold
        self.audit_log = audit_log
        self.io_guard = io_guard
        self.device_descriptor = device_descriptor
        self._clock = clock

        logger.info(f"Initialized MatchEngine with threshold={threshold:.2f}")

    def search(self, embedding: np.ndarray, gallery: Gallery) -> MatchResult:
        """Find the best candidate without auditing.

        Args:
            embedding: Live embedding, shape [D]
            gallery: Mapping of identity to template

        Returns:
            MatchResult. An empty gallery gives identity None, score 0.0.

        Raises:
            DimensionMismatch: If a template has a different dimension.
        """
        best_identity: Optional[str] = None
        best_score = 0.0

        for identity, template in gallery.items():
            score = cosine_similarity(embedding, template.embedding)
            if best_identity is None or score > best_score:
                best_identity = identity
                best_score = score

        matched = best_identity is not None and best_score >= self.threshold

        if best_identity is None:
            logger.debug("Empty gallery, no match")
        elif matched:
            logger.debug(
                f"Matched: {best_identity} (score={best_score:.3f}, "
                f"threshold={self.threshold:.3f})"
            )
        else:
            logger.debug(
                f"No match (best: {best_identity} with score={best_score:.3f}, "
                f"below threshold={self.threshold:.3f})"
            )

        return MatchResult(
            identity=best_identity if matched else None,
            score=best_score,
            matched=matched,
            best_candidate=best_identity,
        )

    def match(self, embedding: np.ndarray, gallery: Gallery) -> MatchResult:
        """Find the best candidate and record the attempt.

        Args:
            embedding: Live embedding, shape [D]
            gallery: Mapping of identity to template

        Returns:
            MatchResult for the attempt.

        Raises:
            DimensionMismatch: If a template has a different dimension.
        """
        result = self.search(embedding, gallery)
        self._record(embedding, result)
        return result

    def _record(self, embedding: np.ndarray, result: MatchResult) -> None:
        if self.audit_log is None:
            return

        entry = RecognitionLogEntry(
            identity=result.identity,
            attempted_embedding=np.asarray(embedding, dtype=np.float32).copy(),
            similarity_score=result.score,
            success=result.matched,
            timestamp=self._clock(),
            device_descriptor=self.device_descriptor,
        )

        if self.io_guard is not None:
            self.io_guard.submit(self.audit_log.append, entry, what="recognition log append")
            return

        try:
            self.audit_log.append(entry)
        except Exception as e:
            logger.error(f"recognition log append failed: {e}")

    def set_threshold(self, threshold: float) -> None:
        """Update match threshold.

        Args:
            threshold: New threshold value (0.0 to 1.0)

        Raises:
            ValueError: If threshold is not in valid range.
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be in [0, 1], got {threshold}")

        old_threshold = self.threshold
        self.threshold = threshold

        logger.info(f"Updated match threshold: {old_threshold:.2f} -> {threshold:.2f}")

    def __repr__(self) -> str:
        """String representation."""
        audit = "on" if self.audit_log is not None else "off"
        return f"MatchEngine(threshold={self.threshold:.2f}, audit={audit})"
