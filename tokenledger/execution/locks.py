from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """
    One mutual-exclusion scope per key (wallet id, token id, ...).

    Different keys never block each other; the same key is strictly serialized.
    Locks are created on first use and kept for the process lifetime.
    """

    def __init__(self, *, name: str = "keyed") -> None:
        self.name = str(name)
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, key: str) -> threading.Lock:
        k = str(key)
        with self._guard:
            lock = self._locks.get(k)
            if lock is None:
                lock = threading.Lock()
                self._locks[k] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
