"""Frame sources for capture sessions.

Sources return ``FrameSample`` records stamped with the capture time, and
report "not ready" instead of raising when a frame is missing, so a session
simply skips that tick.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

import cv2

from attendface.exceptions import InitializationFailure
from attendface.interfaces import FrameSample
from attendface.logging_config import get_logger
from attendface.utils import now_local

logger = get_logger(__name__)


class WebcamSource:
    """Frame source reading from a webcam or USB camera.

    Attributes:
        camera_id: Camera device ID (0 for default camera)
        cap: OpenCV VideoCapture object

    Example:
        >>> with WebcamSource(camera_id=0) as source:
        ...     ready, sample = source.read()
        ...     if ready:
        ...         result = analyzer.analyze(sample.image)
    """

    def __init__(self, camera_id: int = 0, width: int = 1280, height: int = 720):
        """Open the webcam.

        Args:
            camera_id: Camera device index
            width: Requested frame width (the camera may ignore it)
            height: Requested frame height

        Raises:
            InitializationFailure: If the webcam cannot be opened.
        """
        self.camera_id = camera_id
        self.cap = cv2.VideoCapture(camera_id)

        if not self.cap.isOpened():
            raise InitializationFailure(
                f"Failed to open webcam with camera_id={camera_id}. "
                f"Check if camera is connected and not in use by another application."
            )

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Opened webcam {camera_id}: {actual_width}x{actual_height}")

    def read(self) -> Tuple[bool, Optional[FrameSample]]:
        """Read the next frame.

        Returns:
            (True, FrameSample) on success, (False, None) when no frame is
            available.
        """
        if not self.cap.isOpened():
            logger.error("Webcam is not opened")
            return False, None

        success, frame = self.cap.read()
        if not success or frame is None:
            logger.debug("Webcam frame not ready")
            return False, None

        return True, FrameSample(image=frame, timestamp=now_local())

    def release(self) -> None:
        """Release webcam resources."""
        if self.cap.isOpened():
            self.cap.release()
            logger.info(f"Released webcam {self.camera_id}")

    @property
    def is_opened(self) -> bool:
        return self.cap.isOpened()

    def __repr__(self) -> str:
        """String representation."""
        status = "opened" if self.is_opened else "closed"
        return f"WebcamSource(camera_id={self.camera_id}, status={status})"

    def __enter__(self) -> WebcamSource:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class ImageFileSource:
    """Frame source that serves one still image, for offline checks.

    Every read returns the same image. Liveness will not pass on a still
    image, which makes this source useful for verifying that behavior.
    """

    def __init__(self, image_path: str | Path):
        self.image_path = Path(image_path)
        if not self.image_path.exists():
            raise InitializationFailure(f"Image file not found: {self.image_path}")

        self.image = cv2.imread(str(self.image_path))
        if self.image is None:
            raise InitializationFailure(f"Failed to read image: {self.image_path}")

        logger.info(
            f"Loaded image {self.image_path.name} "
            f"({self.image.shape[1]}x{self.image.shape[0]})"
        )

    def read(self) -> Tuple[bool, Optional[FrameSample]]:
        return True, FrameSample(image=self.image.copy(), timestamp=now_local())

    def release(self) -> None:
        pass

    def __repr__(self) -> str:
        """String representation."""
        return f"ImageFileSource(path={self.image_path.name})"
