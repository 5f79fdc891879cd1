"""Attendance decision with one-event-per-day deduplication.

An accepted match becomes an ``AttendanceEvent`` unless the identity
already has one in the current attendance day. The day boundary is a
policy (timezone plus start hour), not midnight by assumption.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

from attendface.exceptions import PersistenceFailure
from attendface.interfaces import AttendanceEvent, AttendanceStore
from attendface.io_guard import IOGuard
from attendface.logging_config import get_logger
from attendface.utils import now_local

logger = get_logger(__name__)


@dataclass(frozen=True)
class DayPolicy:
    """Defines which attendance day an instant belongs to.

    Attributes:
        start_hour: Hour (0-23) at which a day begins
        tz: Timezone of the day boundary; None means the local zone
    """

    start_hour: int = 0
    tz: Optional[tzinfo] = None

    def __post_init__(self) -> None:
        if not 0 <= self.start_hour <= 23:
            raise ValueError(f"start_hour must be in [0, 23], got {self.start_hour}")

    @classmethod
    def from_names(cls, start_hour: int = 0, timezone: Optional[str] = None) -> DayPolicy:
        """Build a policy from a start hour and an IANA timezone name."""
        return cls(start_hour=start_hour, tz=ZoneInfo(timezone) if timezone else None)

    def bounds(self, when: datetime) -> Tuple[datetime, datetime]:
        """Return ``[start, end)`` of the attendance day containing ``when``.

        Args:
            when: Any instant. Naive datetimes are taken as local time.

        Returns:
            Timezone-aware start and end of the day.
        """
        if when.tzinfo is None:
            when = when.astimezone()
        local = when.astimezone(self.tz) if self.tz is not None else when.astimezone()

        start = datetime.combine(local.date(), time(hour=self.start_hour), tzinfo=local.tzinfo)
        if local < start:
            start -= timedelta(days=1)

        if self.tz is not None:
            # Wall-clock arithmetic keeps the start hour across DST changes
            end = (start.replace(tzinfo=None) + timedelta(days=1)).replace(tzinfo=self.tz)
        else:
            end = start + timedelta(days=1)

        return start, end


class AttendanceStatus(enum.Enum):
    """Outcome of an attendance decision."""

    RECORDED = "recorded"
    ALREADY_RECORDED = "already_recorded"
    PENDING = "pending"


@dataclass(frozen=True)
class AttendanceOutcome:
    """Result of :meth:`AttendanceDecision.record`.

    Attributes:
        status: What happened
        event: The stored event, the existing event of the day, or the
            unsaved event awaiting retry
        error: Failure message for a PENDING outcome
    """

    status: AttendanceStatus
    event: AttendanceEvent
    error: Optional[str] = None

    @property
    def recorded(self) -> bool:
        return self.status is AttendanceStatus.RECORDED

    @property
    def already_recorded(self) -> bool:
        return self.status is AttendanceStatus.ALREADY_RECORDED

    @property
    def pending(self) -> bool:
        return self.status is AttendanceStatus.PENDING


class AttendanceDecision:
    """Turns accepted matches into deduplicated attendance events.

    Example:
        >>> decision = AttendanceDecision(store, device_descriptor="lobby-1")
        >>> outcome = decision.record("alice", confidence=0.91)
        >>> if outcome.already_recorded:
        ...     print(f"Already marked at {outcome.event.timestamp:%H:%M}")
    """

    def __init__(
        self,
        store: AttendanceStore,
        device_descriptor: str = "",
        day_policy: Optional[DayPolicy] = None,
        io_guard: Optional[IOGuard] = None,
        clock: Callable[[], datetime] = now_local,
    ):
        """Initialize attendance decision.

        Args:
            store: Attendance store
            device_descriptor: Capture station recorded with each event
            day_policy: Day boundary policy (defaults to local midnight)
            io_guard: Runs store calls with a timeout. If None, store calls
                run inline and their exceptions become PersistenceFailure.
            clock: Source of event timestamps
        """
        self.store = store
        self.device_descriptor = device_descriptor
        self.day_policy = day_policy or DayPolicy()
        self.io_guard = io_guard
        self._clock = clock

    def _resolve(self, when: Optional[datetime]) -> datetime:
        when = when or self._clock()
        # Stored events and day bounds are always timezone-aware
        if when.tzinfo is None:
            when = when.astimezone()
        return when

    def _call(self, fn, *args, what: str):
        if self.io_guard is not None:
            return self.io_guard.call(fn, *args, what=what)
        try:
            return fn(*args)
        except Exception as e:
            raise PersistenceFailure(f"{what} failed: {e}") from e

    def find_today(self, identity: str, when: Optional[datetime] = None) -> Optional[AttendanceEvent]:
        """Return the event already recorded for ``identity`` on the day of ``when``.

        Raises:
            PersistenceFailure: If the store lookup fails.
        """
        when = self._resolve(when)
        start, end = self.day_policy.bounds(when)
        return self._call(
            self.store.find_by_identity_on_day,
            identity,
            start,
            end,
            what="attendance lookup",
        )

    def record(
        self,
        identity: str,
        confidence: float,
        when: Optional[datetime] = None,
    ) -> AttendanceOutcome:
        """Record attendance for an accepted match.

        Args:
            identity: Matched identity
            confidence: Match confidence (clamped to [0, 1])
            when: Event time, defaults to now

        Returns:
            AttendanceOutcome. RECORDED with the new event, ALREADY_RECORDED
            with the existing event, or PENDING with the unsaved event when
            the store failed.
        """
        when = self._resolve(when)
        event = AttendanceEvent(
            identity=identity,
            timestamp=when,
            confidence=float(min(max(confidence, 0.0), 1.0)),
            device_descriptor=self.device_descriptor,
        )

        try:
            existing = self.find_today(identity, when)
        except PersistenceFailure as e:
            logger.warning(f"Attendance for '{identity}' pending: {e}")
            return AttendanceOutcome(AttendanceStatus.PENDING, event, error=str(e))

        if existing is not None:
            logger.info(
                f"Attendance already recorded for '{identity}' "
                f"at {existing.timestamp:%H:%M}"
            )
            return AttendanceOutcome(AttendanceStatus.ALREADY_RECORDED, existing)

        try:
            self._call(self.store.insert, event, what="attendance insert")
        except PersistenceFailure as e:
            logger.warning(f"Attendance for '{identity}' pending: {e}")
            return AttendanceOutcome(AttendanceStatus.PENDING, event, error=str(e))

        logger.info(
            f"Attendance recorded for '{identity}' "
            f"(confidence={event.confidence:.3f}, at {when:%H:%M:%S})"
        )
        return AttendanceOutcome(AttendanceStatus.RECORDED, event)

    def retry(self, outcome: AttendanceOutcome) -> AttendanceOutcome:
        """Retry a PENDING outcome with its original timestamp."""
        if not outcome.pending:
            return outcome
        return self.record(
            outcome.event.identity,
            outcome.event.confidence,
            when=outcome.event.timestamp,
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"AttendanceDecision(device='{self.device_descriptor}', "
            f"day_start={self.day_policy.start_hour:02d}:00)"
        )
