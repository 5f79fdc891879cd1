"""High-level services for the attendance pipeline.

Enrollment lives in :mod:`attendface.enrollment`; this package holds the
scanning side.
"""

from attendface.services.recognition import RecognitionService, ScanResult, ScanStatus

__all__ = [
    "RecognitionService",
    "ScanResult",
    "ScanStatus",
]
