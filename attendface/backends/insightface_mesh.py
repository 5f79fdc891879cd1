"""Face analyzer combining InsightFace SCRFD detection with a MediaPipe mesh.

SCRFD (via InsightFace's FaceAnalysis API) locates the face and scores it,
the MediaPipe Face Landmarker places the dense 468/478-point mesh, and
``FeatureExtractor`` turns the crop plus mesh into the embedding.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from attendface.config import Config
from attendface.exceptions import InitializationFailure
from attendface.features import FeatureExtractor
from attendface.interfaces import BBox, Detected, DetectionResult, NotDetected
from attendface.logging_config import get_logger
from attendface.utils import crop_bbox

logger = get_logger(__name__)


def _providers(ctx_id: int) -> list:
    if ctx_id >= 0:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def load_scrfd(model_pack: str, ctx_id: int = -1, det_size: tuple[int, int] = (640, 640)):
    """Load the SCRFD detector of an InsightFace model pack.

    Raises:
        InitializationFailure: If the model pack cannot be loaded.
    """
    logger.info(
        f"Initializing SCRFD detector (model={model_pack}, "
        f"device={'GPU:' + str(ctx_id) if ctx_id >= 0 else 'CPU'}, det_size={det_size})"
    )
    try:
        from insightface.app import FaceAnalysis

        app = FaceAnalysis(
            name=model_pack,
            allowed_modules=["detection"],
            providers=_providers(ctx_id),
        )
        app.prepare(ctx_id=ctx_id, det_size=det_size)
    except Exception as e:
        raise InitializationFailure(f"Failed to load SCRFD detector: {e}") from e

    logger.info("SCRFD detector initialized successfully")
    return app


class MeshLandmarker:
    """Dense face mesh from the MediaPipe Face Landmarker (Tasks API).

    Example:
        >>> landmarker = MeshLandmarker("models/face_landmarker.task")
        >>> points = landmarker.locate(frame_bgr)   # [478, 2] pixels, or None
    """

    def __init__(self, model_path: str | Path):
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise InitializationFailure(
                f"Face landmarker model not found: {self.model_path}. "
                f"Download face_landmarker.task from the MediaPipe model page."
            )

        try:
            import mediapipe as mp
            from mediapipe.tasks import python as mp_tasks
            from mediapipe.tasks.python import vision

            options = vision.FaceLandmarkerOptions(
                base_options=mp_tasks.BaseOptions(model_asset_path=str(self.model_path)),
                running_mode=vision.RunningMode.IMAGE,
                num_faces=1,
            )
            self._landmarker = vision.FaceLandmarker.create_from_options(options)
        except Exception as e:
            raise InitializationFailure(f"Failed to load face landmarker: {e}") from e

        self._mp = mp
        logger.info(f"Loaded face landmarker from {self.model_path.name}")

    def locate(self, frame_bgr: np.ndarray) -> Optional[np.ndarray]:
        """Return mesh points in frame pixel coordinates, or None if no face."""
        h, w = frame_bgr.shape[:2]
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)

        result = self._landmarker.detect(image)
        if not result.face_landmarks:
            return None

        return np.array(
            [(lm.x * w, lm.y * h) for lm in result.face_landmarks[0]],
            dtype=np.float32,
        )

    def close(self) -> None:
        self._landmarker.close()


class InsightFaceMeshAnalyzer:
    """Single-face analyzer: detection, dense landmarks and embedding.

    When several faces are detected the highest scoring one is used. If the
    mesh is unavailable for a frame, the detector's five keypoints stand in,
    and the checks that need the dense mesh simply fail for that frame.

    Attributes:
        detector: Object with ``get(frame) -> faces`` (InsightFace FaceAnalysis)
        landmarker: Object with ``locate(frame) -> points or None``
        extractor: Feature extractor producing the embedding

    Example:
        >>> analyzer = InsightFaceMeshAnalyzer.from_config(get_config())
        >>> result = analyzer.analyze(frame)
        >>> if result.detected:
        ...     print(result.bbox, result.confidence)
    """

    def __init__(self, detector, landmarker, extractor: Optional[FeatureExtractor] = None):
        self.detector = detector
        self.landmarker = landmarker
        self.extractor = extractor or FeatureExtractor()

    @classmethod
    def from_config(cls, config: Config) -> InsightFaceMeshAnalyzer:
        """Load both models as configured.

        Raises:
            InitializationFailure: If either model fails to load.
        """
        detector = load_scrfd(config.model_pack, config.ctx_id)
        landmarker = MeshLandmarker(config.landmarker_model)
        return cls(detector, landmarker)

    def analyze(self, frame_bgr: np.ndarray) -> DetectionResult:
        if frame_bgr is None or frame_bgr.size == 0:
            return NotDetected("Empty frame")

        faces = self.detector.get(frame_bgr)
        if not faces:
            return NotDetected()

        face = max(faces, key=lambda f: float(f.det_score))
        h, w = frame_bgr.shape[:2]
        bbox = BBox(*(float(v) for v in face.bbox[:4])).clamp(w, h)

        face_crop = crop_bbox(frame_bgr, bbox)
        if face_crop.size == 0:
            return NotDetected("Face outside frame")

        landmarks = self.landmarker.locate(frame_bgr)
        if landmarks is None:
            kps = getattr(face, "kps", None)
            landmarks = np.asarray(kps, dtype=np.float32) if kps is not None else np.zeros((0, 2))
            logger.debug("Mesh unavailable, using detector keypoints")

        embedding = self.extractor.extract(face_crop, landmarks)
        confidence = float(min(max(float(face.det_score), 0.0), 1.0))

        return Detected(
            embedding=embedding,
            landmarks=landmarks,
            bbox=bbox,
            confidence=confidence,
            face_crop=face_crop,
        )

    def close(self) -> None:
        close = getattr(self.landmarker, "close", None)
        if close is not None:
            close()

    def __repr__(self) -> str:
        """String representation."""
        return f"InsightFaceMeshAnalyzer(extractor={self.extractor})"
