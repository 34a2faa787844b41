"""
Process-wide edit lock with bounded wait.
"""

import threading
import time
from contextlib import contextmanager
from typing import Optional

from .errors import LockTimeoutError
from ..util.logging import logger


class ProcessLock:
    """Single exclusive mutex serializing every writer of the grid."""

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    def acquire(self, timeout_ms: int) -> bool:
        start = time.time()
        acquired = self._lock.acquire(timeout=max(timeout_ms, 0) / 1000.0)
        waited_ms = (time.time() - start) * 1000

        if not acquired:
            logger.log_lock_event("timeout", timeout_ms=timeout_ms, waited_ms=waited_ms)
            return False

        self._owner = threading.get_ident()
        logger.log_lock_event("acquired", waited_ms=waited_ms)
        return True

    def release(self) -> None:
        if not self.has_lock():
            return
        self._owner = None
        self._lock.release()
        logger.log_lock_event("released")

    def has_lock(self) -> bool:
        """True if the calling thread currently holds the lock."""
        return self._lock.locked() and self._owner == threading.get_ident()

    def is_locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, timeout_ms: int):
        """Acquire or raise LockTimeoutError; always release on exit."""
        if not self.acquire(timeout_ms):
            raise LockTimeoutError(timeout_ms)
        try:
            yield self
        finally:
            self.release()


# Global lock instance shared by every processor in this process
_process_lock = ProcessLock()


def get_process_lock() -> ProcessLock:
    """Get the process-wide lock."""
    return _process_lock
