"""Enrollment: from live captures to one template per identity.

``EnrollmentAggregator`` accepts live, confident embeddings and reduces
them to a template by component-wise mean. ``EnrollmentService`` drives
the per-frame flow (analyze, liveness, aggregate) and persists the
template, discarding the accumulation if the write fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import numpy as np

from attendface.exceptions import DimensionMismatch, PersistenceFailure
from attendface.interfaces import Detected, FaceAnalyzer, FrameSource, Template, TemplateStore
from attendface.io_guard import IOGuard
from attendface.liveness import LivenessEvaluator, LivenessResult, LivenessSession
from attendface.logging_config import get_logger
from attendface.utils import now_local

logger = get_logger(__name__)


class EnrollmentAggregator:
    """Accumulates accepted embeddings and reduces them to a template.

    A sample is accepted only if liveness says the face is live and the
    detection confidence exceeds ``min_confidence``. The template embedding
    is the arithmetic mean of the accepted samples; it is deliberately not
    re-normalized, so its norm can be slightly below 1.

    Attributes:
        target_count: Accepted samples needed to build a template
        min_confidence: Detection confidence a sample must exceed

    Example:
        >>> aggregator = EnrollmentAggregator(target_count=15, min_confidence=0.8)
        >>> aggregator.offer(det.embedding, liveness, det.confidence, det.landmarks)
        >>> if aggregator.is_complete:
        ...     template = aggregator.build("alice")
    """

    def __init__(self, target_count: int = 15, min_confidence: float = 0.8):
        if target_count < 1:
            raise ValueError(f"target_count must be >= 1, got {target_count}")
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {min_confidence}")

        self.target_count = target_count
        self.min_confidence = min_confidence
        self._embeddings: List[np.ndarray] = []
        self._last_landmarks: Optional[np.ndarray] = None
        self._last_liveness_score = 0.0

    @property
    def count(self) -> int:
        """Number of accepted samples so far."""
        return len(self._embeddings)

    @property
    def remaining(self) -> int:
        """Accepted samples still needed."""
        return max(0, self.target_count - self.count)

    @property
    def is_complete(self) -> bool:
        return self.count >= self.target_count

    def offer(
        self,
        embedding: np.ndarray,
        liveness: LivenessResult,
        confidence: float,
        landmarks: Optional[np.ndarray] = None,
    ) -> bool:
        """Offer one capture for enrollment.

        Args:
            embedding: Capture embedding, shape [D]
            liveness: Liveness verdict of the capture
            confidence: Detection confidence of the capture
            landmarks: Landmark set of the capture (kept as provenance)

        Returns:
            True if the sample was accepted.

        Raises:
            DimensionMismatch: If the embedding dimension differs from the
                samples already accepted.
        """
        if self.is_complete:
            return False

        if not liveness.is_live or confidence <= self.min_confidence:
            return False

        embedding = np.asarray(embedding, dtype=np.float32).ravel()
        if self._embeddings and embedding.shape[0] != self._embeddings[0].shape[0]:
            raise DimensionMismatch(self._embeddings[0].shape[0], embedding.shape[0])

        self._embeddings.append(embedding.copy())
        if landmarks is not None:
            self._last_landmarks = np.asarray(landmarks, dtype=np.float32).copy()
        self._last_liveness_score = liveness.score
        return True

    def build(self, identity: str, created_at: Optional[datetime] = None) -> Template:
        """Reduce the accepted samples to a template.

        Args:
            identity: Identity the template belongs to
            created_at: Template timestamp, defaults to now

        Returns:
            Template with the mean embedding and the latest provenance.

        Raises:
            RuntimeError: If fewer than ``target_count`` samples were accepted.
        """
        if not self.is_complete:
            raise RuntimeError(
                f"Enrollment incomplete: {self.count}/{self.target_count} samples accepted"
            )

        mean = np.stack(self._embeddings, axis=0).mean(axis=0).astype(np.float32)
        landmarks = (
            self._last_landmarks
            if self._last_landmarks is not None
            else np.zeros((0, 2), dtype=np.float32)
        )

        return Template(
            identity=identity,
            embedding=mean,
            landmarks=landmarks,
            liveness_score=self._last_liveness_score,
            created_at=created_at or now_local(),
            num_samples=self.count,
        )

    def reset(self) -> None:
        """Discard every accepted sample."""
        self._embeddings.clear()
        self._last_landmarks = None
        self._last_liveness_score = 0.0

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"EnrollmentAggregator({self.count}/{self.target_count}, "
            f"min_confidence={self.min_confidence:.2f})"
        )


@dataclass(frozen=True)
class EnrollmentStep:
    """Outcome of processing one frame during enrollment.

    Attributes:
        accepted: True if the capture was added to the aggregator
        message: Status message explaining the result
        liveness: Liveness verdict, None when no face was detected
        complete: True once enough captures have been accepted
    """

    accepted: bool
    message: str
    liveness: Optional[LivenessResult] = None
    complete: bool = False


class EnrollmentService:
    """Service for capturing and enrolling a person.

    Workflow:
    1. Analyze the frame (detect, landmarks, embedding)
    2. Score liveness against the session history
    3. Offer the capture to the aggregator
    4. Once complete, build the template and upsert it

    Attributes:
        analyzer: Face analyzer backend
        liveness: Liveness evaluator
        template_store: Where templates are persisted
        target_count: Captures per enrollment
        min_confidence: Minimum detection confidence per capture
        io_guard: Runs the template upsert with a timeout

    Example:
        >>> service = EnrollmentService(analyzer, LivenessEvaluator(), store)
        >>> template = service.enroll_from_source(webcam, "alice")
    """

    def __init__(
        self,
        analyzer: FaceAnalyzer,
        liveness: LivenessEvaluator,
        template_store: TemplateStore,
        target_count: int = 15,
        min_confidence: float = 0.8,
        io_guard: Optional[IOGuard] = None,
        clock: Callable[[], datetime] = now_local,
    ):
        self.analyzer = analyzer
        self.liveness = liveness
        self.template_store = template_store
        self.target_count = target_count
        self.min_confidence = min_confidence
        self.io_guard = io_guard
        self._clock = clock

        logger.info(
            f"Initialized EnrollmentService: target_count={target_count}, "
            f"min_confidence={min_confidence}"
        )

    def new_aggregator(self) -> EnrollmentAggregator:
        """Create an empty aggregator with this service's policy."""
        return EnrollmentAggregator(self.target_count, self.min_confidence)

    def process_frame(
        self,
        frame: np.ndarray,
        session: LivenessSession,
        aggregator: EnrollmentAggregator,
    ) -> EnrollmentStep:
        """Process a single frame for enrollment.

        Args:
            frame: Input frame in BGR format [H, W, 3]
            session: Liveness history of this enrollment session
            aggregator: Accumulator of this enrollment session

        Returns:
            EnrollmentStep describing what happened to the frame.
        """
        result = self.analyzer.analyze(frame)

        if not isinstance(result, Detected):
            return EnrollmentStep(False, result.reason, complete=aggregator.is_complete)

        verdict = self.liveness.evaluate(session, result)

        if not verdict.is_live:
            return EnrollmentStep(
                False,
                f"Liveness not confirmed ({verdict.score:.2f})",
                verdict,
                aggregator.is_complete,
            )

        if result.confidence <= self.min_confidence:
            return EnrollmentStep(
                False,
                f"Low detection confidence ({result.confidence:.2f})",
                verdict,
                aggregator.is_complete,
            )

        accepted = aggregator.offer(result.embedding, verdict, result.confidence, result.landmarks)
        message = (
            f"Captured {aggregator.count}/{aggregator.target_count}"
            if accepted
            else "Enrollment already complete"
        )
        if accepted:
            logger.debug(
                f"{message}: confidence={result.confidence:.2f}, liveness={verdict.score:.2f}"
            )

        return EnrollmentStep(accepted, message, verdict, aggregator.is_complete)

    def complete(self, identity: str, aggregator: EnrollmentAggregator) -> Template:
        """Build the template and persist it.

        Args:
            identity: Identity being enrolled
            aggregator: A complete aggregator

        Returns:
            The stored template.

        Raises:
            PersistenceFailure: If the upsert fails. The aggregator is reset
                and capture must restart.
        """
        template = aggregator.build(identity, created_at=self._clock())

        try:
            if self.io_guard is not None:
                self.io_guard.call(
                    self.template_store.upsert, identity, template, what="template upsert"
                )
            else:
                self.template_store.upsert(identity, template)
        except Exception as e:
            aggregator.reset()
            logger.error(f"Enrollment for '{identity}' discarded, restart capture: {e}")
            if isinstance(e, PersistenceFailure):
                raise
            raise PersistenceFailure(f"template upsert failed: {e}") from e

        logger.info(
            f"Enrolled '{identity}' from {template.num_samples} captures "
            f"(liveness={template.liveness_score:.2f})"
        )
        return template

    def enroll_from_source(
        self,
        source: FrameSource,
        identity: str,
        max_frames: Optional[int] = None,
        max_not_ready: int = 30,
    ) -> Optional[Template]:
        """Enroll a person by reading frames until enough are accepted.

        This is the blocking variant of an enrollment session, reading
        frames back to back without a sampling interval. A frame that is
        not ready is skipped.

        Args:
            source: Frame source
            identity: Identity being enrolled
            max_frames: Give up after this many ready frames (None = no limit)
            max_not_ready: Give up after this many not-ready reads in a row

        Returns:
            The stored template, or None if the source stopped delivering
            frames or ``max_frames`` was reached first.

        Raises:
            PersistenceFailure: If the template could not be stored.
        """
        logger.info(f"Starting enrollment for '{identity}' (target: {self.target_count} captures)")

        session = self.liveness.new_session()
        aggregator = self.new_aggregator()
        frame_count = 0
        misses = 0

        try:
            while not aggregator.is_complete:
                if max_frames is not None and frame_count >= max_frames:
                    logger.warning(
                        f"Enrollment for '{identity}' stopped after {frame_count} frames "
                        f"({aggregator.count}/{aggregator.target_count} captured)"
                    )
                    return None

                ready, sample = source.read()
                if not ready or sample is None:
                    misses += 1
                    if misses >= max_not_ready:
                        logger.warning(
                            f"Frame source not ready for {misses} reads, "
                            f"enrollment for '{identity}' abandoned"
                        )
                        return None
                    logger.debug("Frame not ready, skipped")
                    continue

                misses = 0
                frame_count += 1
                self.process_frame(sample.image, session, aggregator)

            return self.complete(identity, aggregator)
        finally:
            session.reset()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"EnrollmentService(target_count={self.target_count}, "
            f"min_confidence={self.min_confidence:.2f})"
        )
