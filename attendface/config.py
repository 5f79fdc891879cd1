"""Configuration management for the attendance pipeline.

This module loads configuration from environment variables (.env file) and
provides a centralized Config class for accessing application settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Attributes:
        thresh: Cosine similarity threshold for a positive match (0.0-1.0)
        num_enrollment_images: Accepted captures needed to build a template
        min_enroll_confidence: Detection confidence a capture must exceed
        min_scan_confidence: Detection confidence required before matching
        scan_interval_ms: Sampling interval of the scan loop
        enroll_interval_ms: Sampling interval of the enrollment loop
        io_timeout: Seconds allowed for a store or audit call
        day_start_hour: Hour (0-23) at which an attendance day begins
        timezone: IANA timezone name for the attendance day, or None for local
        device_descriptor: Free-form description of this capture station
        require_live_scan: Only match detections that pass liveness
        camera_id: Camera device ID for video capture
        ctx_id: Device context ID (-1 for CPU, 0+ for GPU)
        model_pack: InsightFace model pack name
        landmarker_model: Path to the MediaPipe face landmarker bundle
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives a copy of the log
    """

    thresh: float
    num_enrollment_images: int
    min_enroll_confidence: float
    min_scan_confidence: float
    scan_interval_ms: int
    enroll_interval_ms: int
    io_timeout: float
    day_start_hour: int
    timezone: Optional[str]
    device_descriptor: str
    require_live_scan: bool
    camera_id: int
    ctx_id: int
    model_pack: str
    landmarker_model: Path
    log_level: str
    log_file: Optional[str]

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If environment variables are invalid.
        """
        project_root = Path(__file__).parent.parent

        # Matching policy
        thresh = float(os.getenv("THRESH", "0.65"))
        if not 0.0 <= thresh <= 1.0:
            raise ValueError(f"THRESH must be between 0.0 and 1.0, got {thresh}")

        # Enrollment policy
        num_enrollment_images = int(os.getenv("NUM_ENROLLMENT_IMAGES", "15"))
        if num_enrollment_images < 1:
            raise ValueError(
                f"NUM_ENROLLMENT_IMAGES must be >= 1, got {num_enrollment_images}"
            )

        min_enroll_confidence = float(os.getenv("MIN_ENROLL_CONFIDENCE", "0.8"))
        if not 0.0 <= min_enroll_confidence <= 1.0:
            raise ValueError(
                f"MIN_ENROLL_CONFIDENCE must be between 0.0 and 1.0, "
                f"got {min_enroll_confidence}"
            )

        min_scan_confidence = float(os.getenv("MIN_SCAN_CONFIDENCE", "0.85"))
        if not 0.0 <= min_scan_confidence <= 1.0:
            raise ValueError(
                f"MIN_SCAN_CONFIDENCE must be between 0.0 and 1.0, "
                f"got {min_scan_confidence}"
            )

        # Sampling loop
        scan_interval_ms = int(os.getenv("SCAN_INTERVAL_MS", "800"))
        if scan_interval_ms < 1:
            raise ValueError(f"SCAN_INTERVAL_MS must be >= 1, got {scan_interval_ms}")

        enroll_interval_ms = int(os.getenv("ENROLL_INTERVAL_MS", "500"))
        if enroll_interval_ms < 1:
            raise ValueError(
                f"ENROLL_INTERVAL_MS must be >= 1, got {enroll_interval_ms}"
            )

        io_timeout = float(os.getenv("IO_TIMEOUT", "5.0"))
        if io_timeout <= 0:
            raise ValueError(f"IO_TIMEOUT must be > 0, got {io_timeout}")

        # Attendance day
        day_start_hour = int(os.getenv("DAY_START_HOUR", "0"))
        if not 0 <= day_start_hour <= 23:
            raise ValueError(f"DAY_START_HOUR must be in [0, 23], got {day_start_hour}")

        timezone = os.getenv("TIMEZONE") or None

        device_descriptor = os.getenv("DEVICE_DESCRIPTOR", "attendface-kiosk")
        require_live_scan = bool(int(os.getenv("REQUIRE_LIVE_SCAN", "1")))

        # Camera and models
        camera_id = int(os.getenv("CAMERA_ID", "0"))
        if camera_id < 0:
            raise ValueError(f"CAMERA_ID must be >= 0, got {camera_id}")

        ctx_id = int(os.getenv("CTX_ID", "-1"))

        model_pack = os.getenv("MODEL_PACK", "buffalo_l")
        valid_packs = ["buffalo_l", "buffalo_m", "buffalo_s", "buffalo_sc"]
        if model_pack not in valid_packs:
            raise ValueError(f"MODEL_PACK must be one of {valid_packs}, got {model_pack}")

        landmarker_model = Path(
            os.getenv(
                "LANDMARKER_MODEL",
                str(project_root / "models" / "face_landmarker.task"),
            )
        )

        # Logging configuration
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got {log_level}")

        log_file = os.getenv("LOG_FILE") or None

        return cls(
            thresh=thresh,
            num_enrollment_images=num_enrollment_images,
            min_enroll_confidence=min_enroll_confidence,
            min_scan_confidence=min_scan_confidence,
            scan_interval_ms=scan_interval_ms,
            enroll_interval_ms=enroll_interval_ms,
            io_timeout=io_timeout,
            day_start_hour=day_start_hour,
            timezone=timezone,
            device_descriptor=device_descriptor,
            require_live_scan=require_live_scan,
            camera_id=camera_id,
            ctx_id=ctx_id,
            model_pack=model_pack,
            landmarker_model=landmarker_model,
            log_level=log_level,
            log_file=log_file,
        )

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config(\n"
            f"  Threshold: {self.thresh},\n"
            f"  Enrollment: {self.num_enrollment_images} captures "
            f"> {self.min_enroll_confidence} confidence,\n"
            f"  Scan confidence: {self.min_scan_confidence},\n"
            f"  Intervals: scan={self.scan_interval_ms}ms "
            f"enroll={self.enroll_interval_ms}ms,\n"
            f"  IO timeout: {self.io_timeout}s,\n"
            f"  Day start: {self.day_start_hour:02d}:00 "
            f"({self.timezone or 'local'}),\n"
            f"  Device: {self.device_descriptor},\n"
            f"  Camera: {self.camera_id},\n"
            f"  Backend: {self.model_pack} on "
            f"{'GPU' if self.ctx_id >= 0 else 'CPU'}:{self.ctx_id},\n"
            f"  Log Level: {self.log_level}\n"
            f")"
        )


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config instance loaded from environment.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
