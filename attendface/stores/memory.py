"""In-memory store implementations.

These keep everything in process memory behind a lock. They back the kiosk
script and the tests; a deployment plugs in its own implementations of the
store protocols from :mod:`attendface.interfaces`.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from attendface.interfaces import (
    AttendanceEvent,
    Gallery,
    IdentityProfile,
    RecognitionLogEntry,
    Template,
)
from attendface.logging_config import get_logger

logger = get_logger(__name__)


class MemoryTemplateStore:
    """Templates keyed by identity; an upsert replaces the previous one.

    Example:
        >>> store = MemoryTemplateStore()
        >>> store.upsert("alice", template)
        >>> gallery = store.get_all()
    """

    def __init__(self):
        self._templates: Dict[str, Template] = {}
        self._lock = threading.Lock()

    def upsert(self, identity: str, template: Template) -> None:
        with self._lock:
            replaced = identity in self._templates
            self._templates[identity] = template
        logger.debug(f"{'Replaced' if replaced else 'Stored'} template for '{identity}'")

    def get_all(self) -> Gallery:
        """Return a copy, so later upserts do not change the snapshot."""
        with self._lock:
            return dict(self._templates)

    def delete(self, identity: str) -> bool:
        with self._lock:
            return self._templates.pop(identity, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._templates)

    def __contains__(self, identity: str) -> bool:
        with self._lock:
            return identity in self._templates


class MemoryAttendanceStore:
    """Append-only list of attendance events."""

    def __init__(self):
        self._events: List[AttendanceEvent] = []
        self._lock = threading.Lock()

    def insert(self, event: AttendanceEvent) -> None:
        with self._lock:
            self._events.append(event)

    def find_by_identity_on_day(
        self, identity: str, day_start: datetime, day_end: datetime
    ) -> Optional[AttendanceEvent]:
        with self._lock:
            matches = [
                e
                for e in self._events
                if e.identity == identity and day_start <= e.timestamp < day_end
            ]
        if not matches:
            return None
        return max(matches, key=lambda e: e.timestamp)

    def events(self, identity: Optional[str] = None) -> List[AttendanceEvent]:
        """Return stored events, optionally for one identity."""
        with self._lock:
            return [e for e in self._events if identity is None or e.identity == identity]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class MemoryRecognitionLog:
    """Append-only list of recognition attempts."""

    def __init__(self):
        self._entries: List[RecognitionLogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: RecognitionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    @property
    def entries(self) -> List[RecognitionLogEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MemoryIdentityStore:
    """Identity profiles keyed by identity."""

    def __init__(self, profiles: Iterable[IdentityProfile] = ()):
        self._profiles: Dict[str, IdentityProfile] = {p.identity: p for p in profiles}
        self._lock = threading.Lock()

    def add(self, profile: IdentityProfile) -> None:
        with self._lock:
            self._profiles[profile.identity] = profile

    def get(self, identity: str) -> Optional[IdentityProfile]:
        with self._lock:
            return self._profiles.get(identity)
