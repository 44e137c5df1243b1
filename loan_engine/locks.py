"""
Per-loan mutual exclusion

Repayment posting, arrears refresh and portfolio staging all take the same
per-loan lock, so at most one read-modify-write is in flight per loan.
"""

from contextlib import contextmanager
from typing import Iterator, Optional
import threading
import logging

from .exceptions import UnavailableError


logger = logging.getLogger("loan_engine.locks")


class LoanLockRegistry:
    """Lazily created re-entrant lock per loan id, acquired with a timeout"""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks = {}
        self._guard = threading.Lock()

    def _lock_for(self, loan_id: str):
        with self._guard:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = self._locks[loan_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, loan_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the loan's lock for the duration of the block

        Raises:
            UnavailableError: The lock was not acquired within the timeout
        """
        wait = self.timeout_seconds if timeout is None else timeout
        lock = self._lock_for(loan_id)
        if not lock.acquire(timeout=wait):
            logger.warning(f"Timed out after {wait}s waiting for lock on loan {loan_id}")
            raise UnavailableError(f"Loan {loan_id} is busy; lock not acquired within {wait}s")
        try:
            yield
        finally:
            lock.release()
