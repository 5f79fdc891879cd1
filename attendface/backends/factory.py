"""Backend factory for the attendance pipeline.

Builds every component a station needs from one ``Config``:

    components = create_components(config, template_store, attendance_store, audit_log)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from attendface.attendance import AttendanceDecision, DayPolicy
from attendface.config import Config
from attendface.enrollment import EnrollmentService
from attendface.interfaces import (
    AttendanceStore,
    FaceAnalyzer,
    IdentityStore,
    RecognitionAuditLog,
    TemplateStore,
)
from attendface.io_guard import IOGuard
from attendface.liveness import LivenessEvaluator
from attendface.logging_config import get_logger
from attendface.matcher import MatchEngine
from attendface.services.recognition import RecognitionService

logger = get_logger(__name__)


@dataclass
class PipelineComponents:
    """Container for the wired pipeline.

    Attributes:
        analyzer: Face analyzer backend
        enrollment: Enrollment service
        recognition: Recognition service
        io_guard: Shared guard for store calls (shut down on exit)
    """

    analyzer: FaceAnalyzer
    enrollment: EnrollmentService
    recognition: RecognitionService
    io_guard: IOGuard


def create_analyzer(config: Config) -> FaceAnalyzer:
    """Create the configured face analyzer.

    Raises:
        InitializationFailure: If a model fails to load.
    """
    from attendface.backends.insightface_mesh import InsightFaceMeshAnalyzer

    logger.info("Creating InsightFace + MediaPipe analyzer...")
    return InsightFaceMeshAnalyzer.from_config(config)


def create_components(
    config: Config,
    template_store: TemplateStore,
    attendance_store: AttendanceStore,
    audit_log: Optional[RecognitionAuditLog] = None,
    identities: Optional[IdentityStore] = None,
    analyzer: Optional[FaceAnalyzer] = None,
) -> PipelineComponents:
    """Wire analyzer, liveness, matcher and attendance from ``config``.

    Args:
        config: Application configuration
        template_store: Template storage
        attendance_store: Attendance event storage
        audit_log: Recognition audit log (optional)
        identities: Identity display-name lookup (optional)
        analyzer: Pre-built analyzer; created from ``config`` if None

    Returns:
        PipelineComponents ready for sessions.
    """
    analyzer = analyzer or create_analyzer(config)
    io_guard = IOGuard(timeout=config.io_timeout)
    liveness = LivenessEvaluator()

    matcher = MatchEngine(
        threshold=config.thresh,
        audit_log=audit_log,
        io_guard=io_guard,
        device_descriptor=config.device_descriptor,
    )
    decision = AttendanceDecision(
        attendance_store,
        device_descriptor=config.device_descriptor,
        day_policy=DayPolicy.from_names(config.day_start_hour, config.timezone),
        io_guard=io_guard,
    )

    enrollment = EnrollmentService(
        analyzer,
        liveness,
        template_store,
        target_count=config.num_enrollment_images,
        min_confidence=config.min_enroll_confidence,
        io_guard=io_guard,
    )
    recognition = RecognitionService(
        analyzer,
        liveness,
        matcher,
        decision,
        identities=identities,
        min_confidence=config.min_scan_confidence,
        require_live=config.require_live_scan,
    )

    logger.info("Pipeline components created successfully")
    return PipelineComponents(
        analyzer=analyzer,
        enrollment=enrollment,
        recognition=recognition,
        io_guard=io_guard,
    )
