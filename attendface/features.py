"""Handcrafted face feature extraction.

This module converts a face crop and its landmark set into a fixed-length
embedding made of four blocks, in order:

1. Color histogram (96): 32 bins per R, G, B channel, normalized by pixel count
2. Texture (64): mean grayscale intensity of 64 contiguous buffer slices
3. Landmark geometry (128): five subset distance features followed by
   scaled raw landmark positions
4. Edge (64): mean forward-difference gradient magnitude on an 8x8 grid

The concatenated vector is L2-normalized. Extraction is pure: identical
pixels and landmarks always give the identical embedding.
"""

from __future__ import annotations

from typing import Tuple

import cv2
import numpy as np

from attendface.logging_config import get_logger
from attendface.utils import l2_normalize, mean_consecutive_distance, to_grayscale

logger = get_logger(__name__)

CANVAS_SIZE = 128

HIST_BINS = 32
HIST_BIN_WIDTH = 256 // HIST_BINS
TEXTURE_SLICES = 64
LANDMARK_DIM = 128
EDGE_GRID = 8

COLOR_DIM = 3 * HIST_BINS
TEXTURE_DIM = TEXTURE_SLICES
EDGE_DIM = EDGE_GRID * EDGE_GRID
EMBEDDING_DIM = COLOR_DIM + TEXTURE_DIM + LANDMARK_DIM + EDGE_DIM

LANDMARK_SCALE = 1000.0

# Half-open [start, stop) index ranges of the landmark layout
LEFT_EYE = (33, 42)
RIGHT_EYE = (263, 272)
MOUTH = (61, 68)
CONTOUR = (0, 17)
NOSE = (27, 36)

GEOMETRY_SUBSETS: Tuple[Tuple[int, int], ...] = (LEFT_EYE, RIGHT_EYE, MOUTH, CONTOUR, NOSE)


def landmark_subset(landmarks: np.ndarray, span: Tuple[int, int]) -> np.ndarray:
    """Slice a landmark range, returning fewer points for a short set."""
    start, stop = span
    return landmarks[start:stop]


def color_histogram(face_bgr: np.ndarray) -> np.ndarray:
    """Per-channel 32-bin histograms in R, G, B order.

    Args:
        face_bgr: Face crop in BGR format [H, W, 3], dtype uint8

    Returns:
        Array of shape [96]: R bins, then G bins, then B bins, each count
        divided by the number of pixels.
    """
    total = face_bgr.shape[0] * face_bgr.shape[1]
    hist = np.zeros(COLOR_DIM, dtype=np.float64)
    if total == 0:
        return hist

    # OpenCV stores channels as B, G, R
    for i, channel in enumerate((2, 1, 0)):
        values = face_bgr[..., channel].astype(np.int64).ravel()
        counts = np.bincount(values // HIST_BIN_WIDTH, minlength=HIST_BINS)
        hist[i * HIST_BINS:(i + 1) * HIST_BINS] = counts[:HIST_BINS] / total

    return hist


def texture_features(face_bgr: np.ndarray) -> np.ndarray:
    """Mean grayscale intensity of 64 contiguous slices of the pixel buffer.

    Args:
        face_bgr: Face crop in BGR format [H, W, 3]

    Returns:
        Array of shape [64]. Slice ``i`` covers pixels
        ``[floor(i * n / 64), floor((i + 1) * n / 64))``.
    """
    gray = to_grayscale(face_bgr).ravel()
    n = gray.shape[0]
    bounds = (np.arange(TEXTURE_SLICES + 1) * n) // TEXTURE_SLICES

    features = np.zeros(TEXTURE_SLICES, dtype=np.float64)
    for i in range(TEXTURE_SLICES):
        start, stop = bounds[i], bounds[i + 1]
        if stop > start:
            features[i] = gray[start:stop].mean()
    return features


def landmark_features(landmarks: np.ndarray) -> np.ndarray:
    """Geometry block built from the landmark set.

    The first five values are the mean consecutive-point distance over the
    left eye, right eye, mouth, contour and nose subsets. The rest of the
    block holds ``x / 1000, y / 1000`` of landmarks 0, 1, 2, ... until it
    reaches 128 values. Missing points contribute zeros.

    Args:
        landmarks: Landmark set, shape [N, 2], any N (including 0)

    Returns:
        Array of shape [128].
    """
    landmarks = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
    block = np.zeros(LANDMARK_DIM, dtype=np.float64)

    for i, span in enumerate(GEOMETRY_SUBSETS):
        block[i] = mean_consecutive_distance(landmark_subset(landmarks, span))

    offset = len(GEOMETRY_SUBSETS)
    room = LANDMARK_DIM - offset
    num_points = (room + 1) // 2
    coords = landmarks[:num_points].ravel() / LANDMARK_SCALE
    coords = coords[:room]
    block[offset:offset + coords.shape[0]] = coords

    return block


def edge_features(face_bgr: np.ndarray) -> np.ndarray:
    """Mean forward-difference gradient magnitude per 8x8 grid cell.

    Gradients are taken on the red channel: ``gx`` against the right
    neighbour and ``gy`` against the neighbour below. Pixels on the last
    row or column of a cell have no in-cell neighbour and add nothing; the
    cell sum is still divided by the full cell pixel count.

    Args:
        face_bgr: Face crop in BGR format [H, W, 3]

    Returns:
        Array of shape [64] in row-major grid order.
    """
    red = face_bgr[..., 2].astype(np.float64)
    h, w = red.shape

    magnitude = np.zeros((h, w), dtype=np.float64)
    if h > 1 and w > 1:
        gx = red[:-1, 1:] - red[:-1, :-1]
        gy = red[1:, :-1] - red[:-1, :-1]
        magnitude[:-1, :-1] = np.sqrt(gx * gx + gy * gy)

    features = np.zeros(EDGE_DIM, dtype=np.float64)
    for gy_idx in range(EDGE_GRID):
        y0 = (gy_idx * h) // EDGE_GRID
        y1 = ((gy_idx + 1) * h) // EDGE_GRID
        for gx_idx in range(EDGE_GRID):
            x0 = (gx_idx * w) // EDGE_GRID
            x1 = ((gx_idx + 1) * w) // EDGE_GRID
            area = (x1 - x0) * (y1 - y0)
            if area == 0:
                continue
            cell = magnitude[y0:max(y0, y1 - 1), x0:max(x0, x1 - 1)]
            features[gy_idx * EDGE_GRID + gx_idx] = cell.sum() / area

    return features


class FeatureExtractor:
    """Builds fixed-length embeddings from face crops and landmarks.

    Attributes:
        canvas_size: Side of the square canvas crops are resized to
        embedding_dim: Dimension of the output embedding

    Example:
        >>> extractor = FeatureExtractor()
        >>> embedding = extractor.extract(face_crop, landmarks)
        >>> assert embedding.shape == (EMBEDDING_DIM,)
    """

    def __init__(self, canvas_size: int = CANVAS_SIZE):
        if canvas_size < EDGE_GRID:
            raise ValueError(f"canvas_size must be >= {EDGE_GRID}, got {canvas_size}")

        self.canvas_size = canvas_size
        self.embedding_dim = EMBEDDING_DIM

        logger.debug(
            f"Initialized FeatureExtractor (canvas={canvas_size}x{canvas_size}, "
            f"dim={self.embedding_dim})"
        )

    def prepare_canvas(self, face_bgr: np.ndarray) -> np.ndarray:
        """Resize a face crop to the square canvas.

        Args:
            face_bgr: Face crop in BGR format [H, W, 3]

        Returns:
            uint8 image of shape [canvas_size, canvas_size, 3].

        Raises:
            ValueError: If the crop is empty or not a 3-channel image.
        """
        if face_bgr is None or face_bgr.size == 0:
            raise ValueError("Empty face crop provided")

        if face_bgr.ndim != 3 or face_bgr.shape[2] < 3:
            raise ValueError(f"Expected 3-channel image, got shape {face_bgr.shape}")

        face_bgr = face_bgr[..., :3]
        if face_bgr.shape[:2] == (self.canvas_size, self.canvas_size):
            return face_bgr.astype(np.uint8, copy=False)

        return cv2.resize(
            face_bgr,
            (self.canvas_size, self.canvas_size),
            interpolation=cv2.INTER_LINEAR,
        )

    def extract(self, face_bgr: np.ndarray, landmarks: np.ndarray) -> np.ndarray:
        """Extract the embedding for one face.

        Args:
            face_bgr: Face crop in BGR format [H, W, 3], any size
            landmarks: Landmark set in frame coordinates, shape [N, 2]

        Returns:
            float32 embedding of shape [EMBEDDING_DIM], unit length unless
            every feature is zero.

        Raises:
            ValueError: If the crop is empty or malformed.
        """
        canvas = self.prepare_canvas(face_bgr)

        embedding = np.concatenate(
            [
                color_histogram(canvas),
                texture_features(canvas),
                landmark_features(landmarks),
                edge_features(canvas),
            ]
        )

        return l2_normalize(embedding)

    def __repr__(self) -> str:
        """String representation."""
        return f"FeatureExtractor(canvas={self.canvas_size}, dim={self.embedding_dim})"
