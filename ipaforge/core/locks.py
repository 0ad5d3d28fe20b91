"""Per-key mutual exclusion.

Operations on one artifact are serialized; operations on different
artifacts never wait on each other.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    """A lazily populated map of ``key -> threading.RLock``.

    Locks are reentrant so a holder can call back into code that takes
    the same key (e.g. the signing worker calling ``replace_binary``).
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for *key* for the duration of the ``with`` block."""
        lock = self._lock_for(key)
        with lock:
            yield

    def discard(self, key: Hashable) -> None:
        """Forget the lock for a deleted key."""
        with self._guard:
            self._locks.pop(key, None)
