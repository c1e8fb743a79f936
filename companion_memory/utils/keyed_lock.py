"""
Per-key mutual exclusion for thread-based request handlers.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """Hands out one lock per key so writers on different keys never contend.

    Locks are reference counted and dropped when the last holder or waiter
    leaves, so the registry only contains keys that are in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._slots: Dict[str, List] = {}  # key -> [lock, holders + waiters]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = [threading.Lock(), 0]
                self._slots[key] = slot
            slot[1] += 1

        slot[0].acquire()
        try:
            yield
        finally:
            slot[0].release()
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._slots[key]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._slots)
