"""
payroll_services.run_locks -- per-run mutual exclusion.

Responsibility:
    Guarantee at most one recompute-or-transition operation per payroll run
    inside a process.  Different run ids use different locks and never
    contend.

Failure modes:
    - ConcurrentModificationError when the lock for a run is already held
      and cannot be acquired within the configured timeout (0 = fail fast).

Cross-process writers are caught separately by the optimistic version
check in the repositories.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from payroll_kernel.exceptions import ConcurrentModificationError
from payroll_kernel.logging_config import get_logger

logger = get_logger("services.run_locks")


class RunLockRegistry:
    """
    One ``threading.Lock`` per run id, created on first use.

    An entry lives only while some caller holds or waits for it.
    """

    def __init__(self, timeout_seconds: float = 0.0) -> None:
        if timeout_seconds < 0:
            raise ValueError("timeout_seconds cannot be negative")
        self._timeout = timeout_seconds
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}
        self._registry_lock = threading.Lock()

    def _checkout(self, run_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.setdefault(run_id, threading.Lock())
            self._users[run_id] = self._users.get(run_id, 0) + 1
            return lock

    def _checkin(self, run_id: str) -> None:
        with self._registry_lock:
            remaining = self._users[run_id] - 1
            if remaining:
                self._users[run_id] = remaining
            else:
                del self._users[run_id]
                del self._locks[run_id]

    @contextmanager
    def hold(self, run_id: UUID | str, operation: str = "") -> Iterator[None]:
        """Hold the run's lock for the duration of the block."""
        key = str(run_id)
        lock = self._checkout(key)
        try:
            if self._timeout > 0:
                acquired = lock.acquire(timeout=self._timeout)
            else:
                acquired = lock.acquire(blocking=False)
            if not acquired:
                logger.warning("run_lock_contended", extra={
                    "run_id": key,
                    "operation": operation,
                    "timeout_seconds": self._timeout,
                })
                raise ConcurrentModificationError(key)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def is_locked(self, run_id: UUID | str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(str(run_id))
        return lock is not None and lock.locked()

    def tracked_runs(self) -> int:
        """Number of run ids that currently have a lock entry."""
        with self._registry_lock:
            return len(self._locks)
