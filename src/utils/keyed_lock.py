"""
Per-key mutual exclusion.

Work generation for one schedule must read its newest execution, decide and
write as one unit; unrelated schedules proceed in parallel.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List


class KeyedLock:
    """A lock per key, created on demand and dropped when no longer held"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
