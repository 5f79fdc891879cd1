"""Store implementations for templates, attendance and the recognition log."""

from attendface.stores.memory import (
    MemoryAttendanceStore,
    MemoryIdentityStore,
    MemoryRecognitionLog,
    MemoryTemplateStore,
)

__all__ = [
    "MemoryAttendanceStore",
    "MemoryIdentityStore",
    "MemoryRecognitionLog",
    "MemoryTemplateStore",
]
