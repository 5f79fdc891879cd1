"""Core interfaces and data structures for the attendance pipeline.

This module defines the records that flow through the pipeline and the
Protocols for the external collaborators (frame sources, face analyzers
and stores) so that concrete backends stay swappable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional, Protocol, Tuple, Union, runtime_checkable

import numpy as np


@dataclass(frozen=True)
class BBox:
    """Bounding box of a detected face in frame coordinates.

    Attributes:
        x1: Left edge x-coordinate (pixels)
        y1: Top edge y-coordinate (pixels)
        x2: Right edge x-coordinate (pixels)
        y2: Bottom edge y-coordinate (pixels)
    """

    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        """Get bounding box width in pixels."""
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        """Get bounding box height in pixels."""
        return self.y2 - self.y1

    @property
    def center(self) -> Tuple[float, float]:
        """Get center point (x, y) of bounding box."""
        return ((self.x1 + self.x2) / 2.0, (self.y1 + self.y2) / 2.0)

    def clamp(self, img_width: int, img_height: int) -> BBox:
        """Clamp bounding box coordinates to image boundaries.

        Args:
            img_width: Image width in pixels
            img_height: Image height in pixels

        Returns:
            New BBox with clamped coordinates.
        """
        return BBox(
            x1=max(0.0, min(self.x1, img_width - 1)),
            y1=max(0.0, min(self.y1, img_height - 1)),
            x2=max(0.0, min(self.x2, img_width - 1)),
            y2=max(0.0, min(self.y2, img_height - 1)),
        )

    def __repr__(self) -> str:
        """String representation of bounding box."""
        return f"BBox(x1={self.x1:.1f}, y1={self.y1:.1f}, x2={self.x2:.1f}, y2={self.y2:.1f})"


@dataclass
class FrameSample:
    """A decoded frame plus its capture time.

    Attributes:
        image: BGR image, shape [H, W, 3], dtype uint8
        timestamp: Capture time (timezone-aware)
    """

    image: np.ndarray
    timestamp: datetime


@dataclass
class Detected:
    """A face was found in the frame.

    Attributes:
        embedding: L2-normalized embedding vector, shape [D]
        landmarks: Landmark set in frame pixel coordinates, shape [N, 2]
        bbox: Bounding box around the face
        confidence: Detector confidence (0.0 to 1.0)
        face_crop: BGR pixels inside ``bbox`` at frame resolution
    """

    embedding: np.ndarray
    landmarks: np.ndarray
    bbox: BBox
    confidence: float
    face_crop: np.ndarray

    detected = True

    def __post_init__(self) -> None:
        """Validate detection data after initialization."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Detection confidence must be in [0, 1], got {self.confidence}")

        self.landmarks = np.asarray(self.landmarks, dtype=np.float32).reshape(-1, 2)

    def __repr__(self) -> str:
        """String representation of detection."""
        return (
            f"Detected(bbox={self.bbox}, confidence={self.confidence:.3f}, "
            f"landmarks={len(self.landmarks)}, dim={self.embedding.shape[0]})"
        )


@dataclass(frozen=True)
class NotDetected:
    """No usable face in the frame.

    Attributes:
        reason: Short human readable explanation
    """

    reason: str = "No face detected"

    detected = False


DetectionResult = Union[Detected, NotDetected]


@dataclass(frozen=True)
class Template:
    """Canonical embedding for one enrolled identity.

    Attributes:
        identity: Identity key
        embedding: Mean of the accepted capture embeddings, shape [D]
        landmarks: Landmark snapshot of the last accepted capture
        liveness_score: Liveness score of the last accepted capture
        created_at: When the template was built
        num_samples: Number of captures averaged into the embedding
    """

    identity: str
    embedding: np.ndarray
    landmarks: np.ndarray
    liveness_score: float
    created_at: datetime
    num_samples: int

    def __repr__(self) -> str:
        """String representation of template."""
        return (
            f"Template(identity='{self.identity}', dim={self.embedding.shape[0]}, "
            f"samples={self.num_samples}, liveness={self.liveness_score:.2f})"
        )


Gallery = Mapping[str, Template]


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing one embedding against a gallery.

    Attributes:
        identity: Best matching identity, or None for an empty gallery
            or a score below threshold
        score: Cosine similarity of the best candidate (-1.0 to 1.0)
        matched: True if ``score`` reached the threshold
        best_candidate: Best scoring identity regardless of threshold
    """

    identity: Optional[str]
    score: float
    matched: bool
    best_candidate: Optional[str] = None

    @property
    def confidence(self) -> float:
        """Score clamped to [0, 1] for attendance records."""
        return float(min(max(self.score, 0.0), 1.0))


@dataclass(frozen=True)
class AttendanceEvent:
    """One attendance record.

    Attributes:
        identity: Identity that attended
        timestamp: When the attendance was recorded
        confidence: Match confidence (0.0 to 1.0)
        device_descriptor: Capture station description
    """

    identity: str
    timestamp: datetime
    confidence: float
    device_descriptor: str

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Attendance confidence must be in [0, 1], got {self.confidence}")


@dataclass(frozen=True)
class RecognitionLogEntry:
    """Audit record for a single match attempt."""

    identity: Optional[str]
    attempted_embedding: np.ndarray
    similarity_score: float
    success: bool
    timestamp: datetime
    device_descriptor: str


@dataclass(frozen=True)
class IdentityProfile:
    """Display metadata for an enrolled identity."""

    identity: str
    full_name: str
    email: str = ""
    extra: Mapping[str, str] = field(default_factory=dict)


@runtime_checkable
class FrameSource(Protocol):
    """Protocol for frame sources (webcam, file, stream)."""

    def read(self) -> Tuple[bool, Optional[FrameSample]]:
        """Read the next frame.

        Returns:
            Tuple of (ready, sample). ``ready`` is False when no frame is
            available yet; callers treat that as a skipped tick.
        """
        ...

    def release(self) -> None:
        """Release source resources."""
        ...


@runtime_checkable
class FaceAnalyzer(Protocol):
    """Protocol for the detection + landmark + feature backend."""

    def analyze(self, frame_bgr: np.ndarray) -> DetectionResult:
        """Locate the single face in a frame and extract its features.

        Args:
            frame_bgr: Input image in BGR format, shape [H, W, 3]

        Returns:
            ``Detected`` with embedding, landmarks, bbox and confidence, or
            ``NotDetected`` when no face is present.
        """
        ...


@runtime_checkable
class IdentityStore(Protocol):
    """Read-only lookup of identity display metadata."""

    def get(self, identity: str) -> Optional[IdentityProfile]:
        ...


@runtime_checkable
class TemplateStore(Protocol):
    """Storage of enrolled templates, one per identity."""

    def upsert(self, identity: str, template: Template) -> None:
        """Insert or replace the template for ``identity``."""
        ...

    def get_all(self) -> Gallery:
        """Return a snapshot of every enrolled template."""
        ...


@runtime_checkable
class AttendanceStore(Protocol):
    """Append-only storage of attendance events."""

    def insert(self, event: AttendanceEvent) -> None:
        ...

    def find_by_identity_on_day(
        self, identity: str, day_start: datetime, day_end: datetime
    ) -> Optional[AttendanceEvent]:
        """Return the most recent event in ``[day_start, day_end)``, if any."""
        ...


@runtime_checkable
class RecognitionAuditLog(Protocol):
    """Append-only log of every match attempt."""

    def append(self, entry: RecognitionLogEntry) -> None:
        ...
