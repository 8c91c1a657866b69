from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import threading


class IngestionLocks:
    """One lock per user id; different users never wait on each other."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        lock = self._lock_for(user_id)
        with lock:
            yield
