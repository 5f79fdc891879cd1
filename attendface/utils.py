"""Utility functions for the attendance pipeline.

This module provides vector math, grayscale conversion and cropping helpers
shared by feature extraction, liveness and matching.
"""

from __future__ import annotations

from datetime import datetime

import numpy as np

from attendface.exceptions import DimensionMismatch
from attendface.interfaces import BBox


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """L2-normalize a vector, leaving the zero vector unchanged.

    Args:
        vec: Vector to normalize, shape [D]

    Returns:
        float32 vector with unit norm, or the zero vector if ``vec`` has
        zero magnitude.

    Example:
        >>> normalized = l2_normalize(np.array([3.0, 4.0]))
        >>> normalized.tolist()
        [0.6000000238418579, 0.800000011920929]
    """
    vec = np.asarray(vec, dtype=np.float32)
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        return vec.copy()
    return (vec / norm).astype(np.float32)


def cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """Compute cosine similarity between two vectors.

    Args:
        vec1: First vector, shape [D]
        vec2: Second vector, shape [D]

    Returns:
        Cosine similarity in range [-1, 1]. Returns 0.0 if either vector
        has zero magnitude.

    Raises:
        DimensionMismatch: If the vectors have different lengths.

    Example:
        >>> sim = cosine_similarity(live_embedding, template.embedding)
        >>> if sim >= 0.65:
        ...     print("Same person")
    """
    a = np.asarray(vec1, dtype=np.float64).ravel()
    b = np.asarray(vec2, dtype=np.float64).ravel()

    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(a.shape[0], b.shape[0])

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))

    # Clamp to valid range (numerical stability)
    return float(np.clip(similarity, -1.0, 1.0))


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert a color image to grayscale as the plain channel mean.

    The unweighted mean ``(R + G + B) / 3`` is used rather than the
    luminance weights of ``cv2.cvtColor`` so texture values stay comparable
    with templates enrolled by other clients.

    Args:
        image: Image of shape [H, W, 3] or already grayscale [H, W]

    Returns:
        float64 grayscale image of shape [H, W].
    """
    if image.ndim == 2:
        return image.astype(np.float64)
    return image[..., :3].astype(np.float64).mean(axis=2)


def grayscale_variance(image: np.ndarray) -> float:
    """Variance of grayscale intensity over an image.

    Args:
        image: BGR image [H, W, 3] or grayscale [H, W]

    Returns:
        Population variance, 0.0 for an empty image.
    """
    if image is None or image.size == 0:
        return 0.0
    return float(to_grayscale(image).var())


def crop_bbox(image: np.ndarray, bbox: BBox) -> np.ndarray:
    """Crop the region covered by ``bbox``, clipped to the image.

    Args:
        image: Input image [H, W, C]
        bbox: Bounding box in pixel coordinates

    Returns:
        Cropped view of the image. May be empty if the box lies outside.
    """
    h, w = image.shape[:2]
    x1 = int(max(0, np.floor(bbox.x1)))
    y1 = int(max(0, np.floor(bbox.y1)))
    x2 = int(min(w, np.ceil(bbox.x2)))
    y2 = int(min(h, np.ceil(bbox.y2)))
    return image[y1:max(y1, y2), x1:max(x1, x2)]


def mean_consecutive_distance(points: np.ndarray) -> float:
    """Average Euclidean distance between consecutive points.

    Args:
        points: Array of shape [N, 2]

    Returns:
        Mean step length along the polyline, 0.0 for fewer than two points.
    """
    if len(points) < 2:
        return 0.0
    steps = np.diff(np.asarray(points, dtype=np.float64), axis=0)
    return float(np.linalg.norm(steps, axis=1).mean())


def now_local() -> datetime:
    """Current time as a timezone-aware datetime in the local zone."""
    return datetime.now().astimezone()
