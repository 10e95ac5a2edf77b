"""
Per-entity locks.

Writes to the same order (or prescription) are serialized so two status
updates cannot lose each other's change.  Different ids never contend.
The locks are re-entrant: a payment holds its order's lock while the
order service updates that same order.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """A lazily created `threading.RLock` per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield
