"""
EntityLockManager -- per-entity mutual exclusion for transitions.

Responsibility:
    Serializes transitions that touch the same entity within one engine
    process.  A transition declares every entity key it may write; the
    manager acquires them in sorted order so two multi-entity transitions
    can never wait on each other in a cycle.

Invariants enforced:
    - Keys are acquired in ascending order, each at most once.
    - Locks are re-entrant for the owning thread.
    - A key not acquired within ``timeout_seconds`` raises EntityLockTimeout
      after releasing every key already held.

Non-goals:
    Cross-process exclusion.  Across processes the store's optimistic
    version check is the guard (ConcurrentModification).
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from procurement_kernel.exceptions import EntityLockTimeout
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.entity_locks")


class EntityLockManager:
    def __init__(self, timeout_seconds: float = 5.0):
        self._timeout = timeout_seconds
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _lock_for(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[tuple[str, ...]]:
        """Acquire all ``keys`` in sorted order for the duration of the block."""
        ordered = tuple(sorted(set(keys)))
        acquired: list[threading.RLock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=self._timeout):
                    logger.warning(
                        "entity_lock_timeout",
                        extra={"lock_key": key, "timeout_seconds": self._timeout},
                    )
                    raise EntityLockTimeout(key, self._timeout)
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
