"""Shared fixtures: synthetic frames, landmark sets, embeddings and fakes."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Iterable, Optional

import numpy as np
import pytest

from attendface.features import EMBEDDING_DIM
from attendface.interfaces import BBox, Detected, FrameSample, NotDetected, Template

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def make_landmarks(
    n: int = 478,
    eye_height: float = 6.0,
    depth_offset: float = 30.0,
    origin: tuple = (200.0, 150.0),
) -> np.ndarray:
    """Build a landmark set with controllable eye openness and profile depth.

    Eye subsets get the six-point EAR layout with a horizontal span of 30 px,
    so EAR = eye_height / 15. Right-profile points [127, 144) sit
    ``depth_offset`` px right of the contour points [0, 17).
    """
    ox, oy = origin
    idx = np.arange(n, dtype=np.float32)
    points = np.stack([ox + (idx % 20) * 5.0, oy + (idx // 20) * 5.0], axis=1)

    def place_eye(start: int, x: float, y: float) -> None:
        if n < start + 6:
            return
        points[start:start + 6] = [
            (x, y),
            (x + 10, y - eye_height),
            (x + 20, y - eye_height),
            (x + 30, y),
            (x + 20, y + eye_height),
            (x + 10, y + eye_height),
        ]

    place_eye(33, ox + 20, oy + 40)
    place_eye(263, ox + 80, oy + 40)

    if n >= 144:
        contour = np.stack([np.full(17, ox), oy + np.arange(17) * 8.0], axis=1)
        points[0:17] = contour
        points[127:144] = contour + np.array([depth_offset, 0.0])

    return points.astype(np.float32)


def make_frame(textured: bool = True, seed: int = 0, size=(480, 640)) -> np.ndarray:
    """A BGR frame; textured frames have high grayscale variance."""
    h, w = size
    if textured:
        rng = np.random.default_rng(seed)
        return rng.integers(0, 256, (h, w, 3), dtype=np.uint8)
    return np.full((h, w, 3), 128, dtype=np.uint8)


def unit(index: int, dim: int = EMBEDDING_DIM) -> np.ndarray:
    """Standard basis vector e_index."""
    vec = np.zeros(dim, dtype=np.float32)
    vec[index] = 1.0
    return vec


def make_detection(
    bbox: BBox = BBox(100, 100, 300, 300),
    landmarks: Optional[np.ndarray] = None,
    face_crop: Optional[np.ndarray] = None,
    confidence: float = 0.95,
    embedding: Optional[np.ndarray] = None,
) -> Detected:
    return Detected(
        embedding=unit(0) if embedding is None else embedding,
        landmarks=make_landmarks() if landmarks is None else landmarks,
        bbox=bbox,
        confidence=confidence,
        face_crop=make_frame(size=(200, 200)) if face_crop is None else face_crop,
    )


def make_template(identity: str, embedding: np.ndarray) -> Template:
    return Template(
        identity=identity,
        embedding=np.asarray(embedding, dtype=np.float32),
        landmarks=np.zeros((0, 2), dtype=np.float32),
        liveness_score=0.8,
        created_at=FIXED_NOW,
        num_samples=15,
    )


class FakeSource:
    """Frame source replaying a fixed sequence; ``None`` entries are not ready."""

    def __init__(self, frames: Iterable[Optional[np.ndarray]] = (), repeat: Optional[np.ndarray] = None):
        self._frames = deque(frames)
        self._repeat = repeat
        self.reads = 0
        self.released = False

    def read(self):
        self.reads += 1
        if self._frames:
            frame = self._frames.popleft()
        else:
            frame = self._repeat
        if frame is None:
            return False, None
        return True, FrameSample(image=frame, timestamp=FIXED_NOW)

    def release(self) -> None:
        self.released = True


class ScriptedAnalyzer:
    """Analyzer returning queued results, then repeating the last one."""

    def __init__(self, results):
        self._results = deque(results)
        self._last = NotDetected()
        self.calls = 0

    def analyze(self, frame_bgr):
        self.calls += 1
        if self._results:
            self._last = self._results.popleft()
        return self._last


@pytest.fixture
def landmarks():
    return make_landmarks()


@pytest.fixture
def textured_frame():
    return make_frame(textured=True)


@pytest.fixture
def flat_frame():
    return make_frame(textured=False)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
