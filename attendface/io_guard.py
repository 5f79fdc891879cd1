"""Bounded-time calls into external stores.

Store and audit-log implementations are external I/O. ``IOGuard`` runs them
on a small worker pool so a slow or hung store cannot stall the sampling
loop: blocking calls wait at most ``timeout`` seconds and surface as
``PersistenceFailure``, background calls report failures through the log.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait
from typing import Callable, Optional, Set, TypeVar

from attendface.exceptions import PersistenceFailure
from attendface.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class IOGuard:
    """Executes store calls with a timeout on a dedicated worker pool.

    Attributes:
        timeout: Seconds a blocking call may take before it is abandoned

    Example:
        >>> guard = IOGuard(timeout=5.0)
        >>> guard.call(template_store.upsert, "alice", template, what="template upsert")
        >>> guard.submit(audit_log.append, entry, what="audit append")
        >>> guard.shutdown()
    """

    def __init__(self, timeout: float = 5.0, max_workers: int = 2):
        if timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {timeout}")

        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="attendface-io")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def call(self, fn: Callable[..., T], *args, what: str = "store call") -> T:
        """Run ``fn(*args)`` and wait for its result.

        Args:
            fn: Store method to call
            *args: Positional arguments for ``fn``
            what: Description used in errors and logs

        Returns:
            Whatever ``fn`` returns.

        Raises:
            PersistenceFailure: If ``fn`` raises or exceeds the timeout.
        """
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.error(f"{what} timed out after {self.timeout:.1f}s")
            raise PersistenceFailure(f"{what} timed out after {self.timeout:.1f}s") from e
        except PersistenceFailure:
            raise
        except Exception as e:
            logger.error(f"{what} failed: {e}")
            raise PersistenceFailure(f"{what} failed: {e}") from e

    def submit(self, fn: Callable[..., object], *args, what: str = "background call") -> Future:
        """Run ``fn(*args)`` without waiting; failures are only logged.

        Args:
            fn: Store method to call
            *args: Positional arguments for ``fn``
            what: Description used in logs

        Returns:
            The Future of the call, mainly for tests.
        """
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._pending.add(future)

        def _done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)
            if f.cancelled():
                logger.warning(f"{what} was cancelled")
                return
            error = f.exception()
            if error is not None:
                logger.error(f"{what} failed: {error}")

        future.add_done_callback(_done)
        return future

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for background calls submitted so far.

        Args:
            timeout: Seconds to wait, defaults to the guard timeout

        Returns:
            True if every pending call finished in time.
        """
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=self.timeout if timeout is None else timeout)
        return not not_done

    def shutdown(self) -> None:
        """Stop accepting work and wait for running calls."""
        self._executor.shutdown(wait=True)

    def __repr__(self) -> str:
        """String representation."""
        with self._lock:
            pending = len(self._pending)
        return f"IOGuard(timeout={self.timeout:.1f}s, pending={pending})"
