"""Periodic capture sessions for enrollment and scanning.

Each session polls its frame source on a fixed interval from a worker
thread. A tick that comes due while the previous cycle is still running is
dropped, never queued. A session owns its liveness history exclusively:
it is created in ``start()`` and released in ``stop()``, and ``stop()``
only returns after the in-flight cycle has finished, so no cycle can touch
session state afterwards.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from attendface.enrollment import EnrollmentAggregator, EnrollmentService, EnrollmentStep
from attendface.exceptions import DimensionMismatch, InitializationFailure, PersistenceFailure
from attendface.interfaces import FrameSource, Gallery, Template, TemplateStore
from attendface.io_guard import IOGuard
from attendface.liveness import LivenessSession
from attendface.logging_config import get_logger
from attendface.services.recognition import RecognitionService, ScanResult

logger = get_logger(__name__)


class PeriodicSampler:
    """Calls ``callback`` every ``interval`` seconds on a worker thread.

    The first tick fires one interval after ``start()``; later tick times
    stay anchored to the start time. When a cycle overruns, the
    slots it overlapped are skipped and the next cycle runs at the next
    future slot. :meth:`trigger` runs a cycle on demand and also skips if
    one is already running.

    Attributes:
        interval: Seconds between ticks
        ticks: Cycles that ran
        skipped: Ticks dropped because a cycle was still running

    Example:
        >>> sampler = PeriodicSampler(0.8, session_tick, name="scan")
        >>> sampler.start()
        >>> sampler.stop()
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "sampler"):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")

        self.interval = interval
        self.name = name
        self.ticks = 0
        self.skipped = 0
        self._callback = callback
        self._busy = threading.Lock()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        """Start ticking. Does nothing if already running."""
        if self._worker is not None and self._worker.is_alive():
            return

        # One event per worker; a worker stopped from inside its own cycle
        # exits on its old event even after a restart
        self._stop_event = threading.Event()
        self._worker = threading.Thread(
            target=self._loop,
            args=(self._stop_event,),
            name=f"attendface-{self.name}",
            daemon=True,
        )
        self._worker.start()
        logger.debug(f"Sampler '{self.name}' started (interval={self.interval:.3f}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking and wait for the running cycle to finish.

        Safe to call from inside the callback; the worker then exits after
        the current cycle returns.
        """
        self._stop_event.set()
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=timeout)
        self._worker = None
        logger.debug(
            f"Sampler '{self.name}' stopped ({self.ticks} ticks, {self.skipped} skipped)"
        )

    def trigger(self) -> bool:
        """Run one cycle now unless one is already running.

        Returns:
            True if the cycle ran, False if it was skipped.
        """
        if not self._busy.acquire(blocking=False):
            self.skipped += 1
            logger.debug(f"Sampler '{self.name}' busy, tick skipped")
            return False
        try:
            self.ticks += 1
            self._callback()
        except Exception:
            logger.exception(f"Sampler '{self.name}' cycle failed")
        finally:
            self._busy.release()
        return True

    def _loop(self, stop_event: threading.Event) -> None:
        next_tick = time.monotonic() + self.interval
        while not stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self.trigger()

            next_tick += self.interval
            now = time.monotonic()
            if now > next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                self.skipped += missed
                next_tick += missed * self.interval

    def __repr__(self) -> str:
        """String representation."""
        state = "running" if self.is_running else "stopped"
        return f"PeriodicSampler(name='{self.name}', interval={self.interval:.3f}s, {state})"


class CaptureSession:
    """Base class for a polling capture session bound to one frame source.

    Subclasses implement ``_open`` (create state), ``_process`` (one cycle)
    and ``_close`` (release state). All three run under the session lock.
    """

    name = "capture"

    def __init__(self, source: FrameSource, interval: float):
        self.source = source
        self.frames = 0
        self.error: Optional[str] = None
        self._lock = threading.RLock()
        self._active = False
        self._generation = 0
        self._sampler = PeriodicSampler(interval, self._tick, name=self.name)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def sampler(self) -> PeriodicSampler:
        return self._sampler

    def start(self) -> None:
        """Create session state and start sampling.

        Raises:
            InitializationFailure: If the session cannot start.
        """
        with self._lock:
            if self._active:
                return
            self.frames = 0
            self.error = None
            self._open()
            self._generation += 1
            self._active = True
        self._sampler.start()
        logger.info(f"{self.name.capitalize()} session started")

    def stop(self) -> None:
        """Stop sampling and release session state before returning."""
        self._sampler.stop()
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._generation += 1
            self._close()
        logger.info(f"{self.name.capitalize()} session stopped after {self.frames} frames")

    def tick(self) -> bool:
        """Run one cycle now (skipped if a cycle is running)."""
        return self._sampler.trigger()

    def _tick(self) -> None:
        generation = self._generation
        if not self._active:
            return

        ready, sample = self.source.read()
        if not ready or sample is None:
            logger.debug("Frame not ready, tick skipped")
            return

        with self._lock:
            # Session was stopped (or restarted) while the frame was read
            if not self._active or generation != self._generation:
                return

            self.frames += 1
            try:
                self._process(sample.image)
            except DimensionMismatch as e:
                self.error = str(e)
                logger.error(f"{self.name.capitalize()} session aborted: {e}")
                self._halt()

    def _halt(self) -> None:
        """Stop from inside a cycle (lock is held by the worker)."""
        self._sampler.stop()
        self._active = False
        self._generation += 1
        self._close()

    def _open(self) -> None:
        raise NotImplementedError

    def _process(self, frame) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError


class ScanSession(CaptureSession):
    """Attendance scanning on one station.

    The gallery is loaded once at start; a new session must be started to
    see newly enrolled templates.

    Attributes:
        service: Recognition service
        template_store: Source of the gallery snapshot
        stop_on_match: Stop after the first MATCHED frame
        last_result: Result of the most recent processed frame
        attempts: Frames processed in this session

    Example:
        >>> session = ScanSession(service, webcam, template_store, interval=0.8)
        >>> session.start()
        >>> ...
        >>> session.stop()
    """

    name = "scan"

    def __init__(
        self,
        service: RecognitionService,
        source: FrameSource,
        template_store: TemplateStore,
        interval: float = 0.8,
        io_guard: Optional[IOGuard] = None,
        stop_on_match: bool = True,
        on_result: Optional[Callable[[ScanResult], None]] = None,
    ):
        super().__init__(source, interval)
        self.service = service
        self.template_store = template_store
        self.io_guard = io_guard
        self.stop_on_match = stop_on_match
        self.on_result = on_result
        self.last_result: Optional[ScanResult] = None
        self._gallery: Optional[Gallery] = None
        self._liveness: Optional[LivenessSession] = None

    @property
    def attempts(self) -> int:
        return self.frames

    @property
    def gallery_size(self) -> int:
        return len(self._gallery) if self._gallery is not None else 0

    def _load_gallery(self) -> Gallery:
        try:
            if self.io_guard is not None:
                gallery = self.io_guard.call(self.template_store.get_all, what="gallery load")
            else:
                gallery = self.template_store.get_all()
        except Exception as e:
            raise InitializationFailure(f"Failed to load face database: {e}") from e
        return dict(gallery)

    def _open(self) -> None:
        gallery = self._load_gallery()
        if not gallery:
            raise InitializationFailure("No enrolled faces found. Please enroll first.")

        self._gallery = gallery
        self._liveness = self.service.liveness.new_session()
        self.last_result = None
        logger.info(f"Loaded {len(gallery)} templates for scanning")

    def _process(self, frame) -> None:
        result = self.service.process_frame(frame, self._liveness, self._gallery)
        self.last_result = result

        if self.on_result is not None:
            self.on_result(result)

        if result.matched and self.stop_on_match:
            self._halt()

    def _close(self) -> None:
        if self._liveness is not None:
            self._liveness.reset()
        self._liveness = None
        self._gallery = None


class EnrollmentSession(CaptureSession):
    """Enrollment capture for one identity.

    The session stops itself when the template is stored, or when storing
    fails (``error`` is set and capture must be restarted).

    Attributes:
        service: Enrollment service
        identity: Identity being enrolled
        template: Stored template once enrollment completed
        last_step: Outcome of the most recent processed frame

    Example:
        >>> session = EnrollmentSession(service, webcam, "alice", interval=0.5)
        >>> session.start()
    """

    name = "enrollment"

    def __init__(
        self,
        service: EnrollmentService,
        source: FrameSource,
        identity: str,
        interval: float = 0.5,
        on_step: Optional[Callable[[EnrollmentStep], None]] = None,
    ):
        super().__init__(source, interval)
        self.service = service
        self.identity = identity
        self.on_step = on_step
        self.template: Optional[Template] = None
        self.last_step: Optional[EnrollmentStep] = None
        self._liveness: Optional[LivenessSession] = None
        self._aggregator: Optional[EnrollmentAggregator] = None

    @property
    def progress(self) -> float:
        """Fraction of required captures accepted (0.0 to 1.0)."""
        if self._aggregator is None:
            return 1.0 if self.template is not None else 0.0
        return self._aggregator.count / self._aggregator.target_count

    def _open(self) -> None:
        self._liveness = self.service.liveness.new_session()
        self._aggregator = self.service.new_aggregator()
        self.template = None
        self.last_step = None

    def _process(self, frame) -> None:
        step = self.service.process_frame(frame, self._liveness, self._aggregator)
        self.last_step = step

        if self.on_step is not None:
            self.on_step(step)

        if not step.complete:
            return

        try:
            self.template = self.service.complete(self.identity, self._aggregator)
        except PersistenceFailure as e:
            self.error = str(e)
        self._halt()

    def _close(self) -> None:
        if self._liveness is not None:
            self._liveness.reset()
        if self._aggregator is not None:
            self._aggregator.reset()
        self._liveness = None
        self._aggregator = None
