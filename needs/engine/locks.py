"""Per-need mutual exclusion."""

import threading
from contextlib import contextmanager
from typing import Dict, Tuple


class KeyedLocks:
    """
    One lock per (sector, capability) key.

    Evaluations of the same need are serialized across the whole
    read-evaluate-commit sequence; different needs never contend.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}

    def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, sector_id: str, capability_id: str):
        lock = self._lock_for((sector_id, capability_id))
        lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
