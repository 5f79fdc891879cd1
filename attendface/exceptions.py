"""Exception hierarchy for the attendance pipeline."""


class AttendFaceError(Exception):
    """Base exception for the attendance pipeline."""


class InitializationFailure(AttendFaceError):
    """Raised when a detection/landmark backend or session cannot start."""


class DimensionMismatch(AttendFaceError, ValueError):
    """Raised when two embeddings of unequal length are compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Embedding dimensions differ: {left} != {right}")


class PersistenceFailure(AttendFaceError):
    """Raised when a template, attendance or audit write fails or times out."""
