import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class KeyedLocks:
    """One mutex per key, created on demand and dropped when unused."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


# Status transitions and linkage edits, keyed by room id
room_locks = KeyedLocks()
# Answer submissions, keyed by (room id, participant key)
participant_locks = KeyedLocks()
