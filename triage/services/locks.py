"""
Per-investigation mutual exclusion.

Every read-modify-write cycle on an investigation (checkpoint actions,
snapshot creation, restore, hard reset, phase result application,
debounce evaluation) runs inside ``investigation_lock(id)``. The locks are
re-entrant so a checkpoint action can take a snapshot without
deadlocking on itself.
"""

import threading
from contextlib import contextmanager

_registry_guard = threading.Lock()
_locks: dict[int, threading.RLock] = {}


def _lock_for(investigation_id: int) -> threading.RLock:
    with _registry_guard:
        lock = _locks.get(investigation_id)
        if lock is None:
            lock = threading.RLock()
            _locks[investigation_id] = lock
        return lock


@contextmanager
def investigation_lock(investigation_id: int):
    """Hold the single-writer lock for one investigation."""
    lock = _lock_for(int(investigation_id))
    with lock:
        yield
