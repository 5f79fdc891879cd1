"""Multi-signal liveness scoring.

A ``LivenessSession`` holds the temporal history of one capture session
and a ``LivenessEvaluator`` advances it once per detected face. Four
checks feed a weighted score:

- Blink: eye aspect ratio drops below a threshold in the recent history
- Movement: bounding-box center displacement is plausible, not noise
- Texture: grayscale variance of the crop is high (flat spoofs are low)
- Depth: contour and right-profile landmarks diverge (flat images diverge less)

Sessions never share state; each scanning or enrollment station owns one.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import numpy as np

from attendface.features import CONTOUR, LEFT_EYE, RIGHT_EYE, landmark_subset
from attendface.interfaces import BBox, Detected
from attendface.logging_config import get_logger
from attendface.utils import grayscale_variance

logger = get_logger(__name__)

RIGHT_PROFILE = (127, 144)
FULL_LANDMARK_COUNT = 468


@dataclass(frozen=True)
class LivenessPolicy:
    """Thresholds and weights of the liveness checks.

    Attributes:
        ear_threshold: Eye aspect ratio below which an eye counts as closed
        blink_window: Capacity of the blink history
        min_blinks: Closed-eye frames in the window needed for a blink
        movement_window: Capacity of the movement history
        min_movement: Rolling mean displacement must exceed this (pixels)
        max_movement: Rolling mean displacement must stay below this (pixels)
        min_texture_variance: Grayscale variance a live face must exceed
        min_depth_divergence: Profile divergence a live face must exceed
        blink_weight, movement_weight, texture_weight, depth_weight: Score weights
        live_threshold: Score at or above which the face counts as live
    """

    ear_threshold: float = 0.2
    blink_window: int = 10
    min_blinks: int = 2
    movement_window: int = 20
    min_movement: float = 3.0
    max_movement: float = 50.0
    min_texture_variance: float = 100.0
    min_depth_divergence: float = 50.0
    blink_weight: float = 0.3
    movement_weight: float = 0.3
    texture_weight: float = 0.2
    depth_weight: float = 0.2
    live_threshold: float = 0.5

    def __post_init__(self) -> None:
        if self.blink_window < 1 or self.movement_window < 1:
            raise ValueError("History windows must be >= 1")
        if self.min_movement >= self.max_movement:
            raise ValueError(
                f"min_movement ({self.min_movement}) must be < max_movement ({self.max_movement})"
            )


@dataclass(frozen=True)
class LivenessChecks:
    """Individual check outcomes for one frame."""

    blink_detected: bool
    head_movement: bool
    texture_variance: bool
    depth_estimate: bool


@dataclass(frozen=True)
class LivenessResult:
    """Liveness verdict for one frame.

    Attributes:
        score: Weighted sum of passed checks (0.0 to 1.0)
        checks: Per-check outcomes
        is_live: True if ``score`` reached the policy threshold
    """

    score: float
    checks: LivenessChecks
    is_live: bool

    def __repr__(self) -> str:
        """String representation."""
        c = self.checks
        return (
            f"LivenessResult(score={self.score:.2f}, is_live={self.is_live}, "
            f"blink={c.blink_detected}, movement={c.head_movement}, "
            f"texture={c.texture_variance}, depth={c.depth_estimate})"
        )


class LivenessSession:
    """Temporal liveness history of one capture session.

    Attributes:
        previous_bbox: Bounding box of the previous evaluated frame
        previous_landmarks: Landmark set of the previous evaluated frame
        blink_history: Recent closed-eye flags, oldest first
        movement_history: Recent center displacements, oldest first
    """

    def __init__(self, blink_window: int = 10, movement_window: int = 20):
        self.previous_bbox: Optional[BBox] = None
        self.previous_landmarks: Optional[np.ndarray] = None
        self.blink_history: Deque[bool] = deque(maxlen=blink_window)
        self.movement_history: Deque[float] = deque(maxlen=movement_window)

    @classmethod
    def for_policy(cls, policy: LivenessPolicy) -> LivenessSession:
        """Create a session sized for ``policy``."""
        return cls(blink_window=policy.blink_window, movement_window=policy.movement_window)

    def reset(self) -> None:
        """Clear the previous-frame snapshot and both histories."""
        self.previous_bbox = None
        self.previous_landmarks = None
        self.blink_history.clear()
        self.movement_history.clear()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"LivenessSession(blinks={len(self.blink_history)}, "
            f"movements={len(self.movement_history)})"
        )


def eye_aspect_ratio(eye_points: np.ndarray) -> float:
    """Compute the eye aspect ratio of an eye landmark subset.

    ``(|p1 - p5| + |p2 - p4|) / (2 * |p0 - p3|)``

    Args:
        eye_points: Eye subset, shape [N, 2]

    Returns:
        The ratio, or 1.0 (eye open) when the subset has fewer than six
        points or a zero horizontal span.
    """
    if len(eye_points) < 6:
        return 1.0

    p = np.asarray(eye_points, dtype=np.float64)
    vertical1 = np.linalg.norm(p[1] - p[5])
    vertical2 = np.linalg.norm(p[2] - p[4])
    horizontal = np.linalg.norm(p[0] - p[3])

    if horizontal == 0.0:
        return 1.0

    return float((vertical1 + vertical2) / (2.0 * horizontal))


def profile_divergence(landmarks: np.ndarray) -> float:
    """Sum of point-wise distances between contour and right-profile subsets."""
    left = landmark_subset(landmarks, CONTOUR)
    right = landmark_subset(landmarks, RIGHT_PROFILE)
    n = min(len(left), len(right))
    if n == 0:
        return 0.0
    return float(np.linalg.norm(left[:n] - right[:n], axis=1).sum())


class LivenessEvaluator:
    """Scores liveness for detections, advancing a session's history.

    The evaluator itself holds only policy; all history lives in the
    ``LivenessSession`` passed to :meth:`evaluate`.

    Example:
        >>> evaluator = LivenessEvaluator()
        >>> session = evaluator.new_session()
        >>> result = evaluator.evaluate(session, detection)
        >>> if result.is_live:
        ...     print("Live face")
    """

    def __init__(self, policy: Optional[LivenessPolicy] = None):
        self.policy = policy or LivenessPolicy()
        logger.debug(f"Initialized LivenessEvaluator with {self.policy}")

    def new_session(self) -> LivenessSession:
        """Create an empty session sized for this evaluator's policy."""
        return LivenessSession.for_policy(self.policy)

    def _check_blink(self, session: LivenessSession, landmarks: np.ndarray) -> bool:
        left = eye_aspect_ratio(landmark_subset(landmarks, LEFT_EYE))
        right = eye_aspect_ratio(landmark_subset(landmarks, RIGHT_EYE))
        closed = left < self.policy.ear_threshold or right < self.policy.ear_threshold
        session.blink_history.append(closed)
        return sum(session.blink_history) >= self.policy.min_blinks

    def _check_movement(self, session: LivenessSession, bbox: BBox) -> bool:
        if session.previous_bbox is not None:
            px, py = session.previous_bbox.center
            cx, cy = bbox.center
            session.movement_history.append(float(np.hypot(cx - px, cy - py)))

        if not session.movement_history:
            return False

        average = sum(session.movement_history) / len(session.movement_history)
        return self.policy.min_movement < average < self.policy.max_movement

    def _check_texture(self, face_crop: np.ndarray) -> bool:
        return grayscale_variance(face_crop) > self.policy.min_texture_variance

    def _check_depth(self, landmarks: np.ndarray) -> bool:
        if len(landmarks) < FULL_LANDMARK_COUNT:
            return False
        return profile_divergence(landmarks) > self.policy.min_depth_divergence

    def evaluate(self, session: LivenessSession, detection: Detected) -> LivenessResult:
        """Advance ``session`` with one detection and score it.

        Args:
            session: History of the capture session this frame belongs to
            detection: Current detection (landmarks, bbox, face crop)

        Returns:
            LivenessResult with the weighted score and per-check outcomes.
        """
        landmarks = detection.landmarks

        checks = LivenessChecks(
            blink_detected=self._check_blink(session, landmarks),
            head_movement=self._check_movement(session, detection.bbox),
            texture_variance=self._check_texture(detection.face_crop),
            depth_estimate=self._check_depth(landmarks),
        )

        policy = self.policy
        score = (
            (policy.blink_weight if checks.blink_detected else 0.0)
            + (policy.movement_weight if checks.head_movement else 0.0)
            + (policy.texture_weight if checks.texture_variance else 0.0)
            + (policy.depth_weight if checks.depth_estimate else 0.0)
        )

        session.previous_bbox = detection.bbox
        session.previous_landmarks = landmarks

        result = LivenessResult(
            score=score,
            checks=checks,
            is_live=score >= policy.live_threshold,
        )

        logger.debug(f"Liveness: {result}")
        return result

    def __repr__(self) -> str:
        """String representation."""
        return f"LivenessEvaluator(threshold={self.policy.live_threshold})"
