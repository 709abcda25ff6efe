"""
In-process EntityStore for tests.

Same contract as SqlEntityStore: versions start at 1 and increase by one
per update, stale versions raise ConcurrentModification, append-only
collections refuse updates, queries are ordered by id, and a failing
transaction leaves nothing behind.

Transactions are serialized by one re-entrant lock.  ``fail_next`` makes
the next matching operation raise CollaboratorUnavailable, which is how the
tests simulate an unreachable backend.

``race_next_update`` stands in for a concurrent writer committing between
a transition's read and its write.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from procurement_kernel.exceptions import (
    CollaboratorUnavailable,
    ConcurrentModification,
    EntityAlreadyExists,
    EntityNotFound,
    ImmutabilityViolation,
)
from procurement_services.entity_store import (
    APPEND_ONLY_COLLECTIONS,
    Predicate,
    Record,
)


class InMemoryEntityStore:
    collaborator_name = "entity_store"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: dict[str, dict[str, tuple[int, dict[str, Any]]]] = {}
        self._depth = 0
        self._snapshot: dict[str, dict[str, tuple[int, dict[str, Any]]]] | None = None
        self._failures: dict[str, int] = {}
        self._races: dict[str, int] = {}
        self.commits = 0
        self.rollbacks = 0

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Raise CollaboratorUnavailable on the next ``times`` calls of ``operation``.

        ``operation`` is one of get/find/create/update/query/commit.
        """
        with self._lock:
            self._failures[operation] = self._failures.get(operation, 0) + times

    def _maybe_fail(self, operation: str) -> None:
        remaining = self._failures.get(operation, 0)
        if remaining:
            self._failures[operation] = remaining - 1
            raise CollaboratorUnavailable(self.collaborator_name, operation, "injected failure")

    def race_next_update(self, collection: str, times: int = 1) -> None:
        """Let another writer commit first on the next ``times`` updates of ``collection``.

        Just before the version check the row's version moves on, and the
        bump survives a rollback, so the updating transaction fails with
        ConcurrentModification and a retry reads the newer version.
        """
        with self._lock:
            self._races[collection] = self._races.get(collection, 0) + times

    def _lose_race(self, collection: str, entity_id: str) -> None:
        if not self._races.get(collection):
            return
        self._races[collection] -= 1
        for data in (self._data, self._snapshot):
            if data is not None and entity_id in data.get(collection, {}):
                version, doc = data[collection][entity_id]
                data[collection][entity_id] = (version + 1, doc)

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._data.get(collection, {}))

    def raw(self, collection: str, entity_id: str) -> dict[str, Any]:
        """The stored document without version bookkeeping."""
        with self._lock:
            return copy.deepcopy(self._data[collection][entity_id][1])

    def tamper(self, collection: str, entity_id: str, patch: dict[str, Any]) -> None:
        """Rewrite a stored document behind the engine's back."""
        with self._lock:
            version, doc = self._data[collection][entity_id]
            doc = {**doc, **copy.deepcopy(patch)}
            self._data[collection][entity_id] = (version + 1, doc)

    # ------------------------------------------------------------------
    # EntityStore API
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._snapshot = copy.deepcopy(self._data)
            self._depth += 1
            try:
                yield
                if outermost:
                    self._maybe_fail("commit")
            except BaseException:
                if outermost:
                    self._data = self._snapshot
                    self.rollbacks += 1
                raise
            else:
                if outermost:
                    self.commits += 1
            finally:
                self._depth -= 1
                if outermost:
                    self._snapshot = None

    def find(self, collection: str, entity_id: str) -> Record | None:
        with self._lock:
            self._maybe_fail("find")
            entry = self._data.get(collection, {}).get(entity_id)
            if entry is None:
                return None
            version, doc = entry
            return Record(collection, entity_id, version, copy.deepcopy(doc))

    def get(self, collection: str, entity_id: str) -> Record:
        record = self.find(collection, entity_id)
        if record is None:
            raise EntityNotFound(collection, entity_id)
        return record

    def create(self, collection: str, entity_id: str, data: dict[str, Any]) -> Record:
        with self.transaction():
            self._maybe_fail("create")
            records = self._data.setdefault(collection, {})
            if entity_id in records:
                raise EntityAlreadyExists(collection, entity_id)
            records[entity_id] = (1, copy.deepcopy(data))
            return Record(collection, entity_id, 1, copy.deepcopy(data))

    def update(
        self,
        collection: str,
        entity_id: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> Record:
        if collection in APPEND_ONLY_COLLECTIONS:
            raise ImmutabilityViolation(collection, entity_id, f"{collection} records are append-only")
        with self.transaction():
            self._maybe_fail("update")
            self._lose_race(collection, entity_id)
            entry = self._data.get(collection, {}).get(entity_id)
            if entry is None:
                raise EntityNotFound(collection, entity_id)
            version, doc = entry
            if version != expected_version:
                raise ConcurrentModification(collection, entity_id, expected_version, version)
            merged = {**doc, **copy.deepcopy(patch)}
            self._data[collection][entity_id] = (version + 1, merged)
            return Record(collection, entity_id, version + 1, copy.deepcopy(merged))

    def query(self, collection: str, predicate: Predicate | None = None) -> list[Record]:
        with self._lock:
            self._maybe_fail("query")
            records = [
                Record(collection, entity_id, version, copy.deepcopy(doc))
                for entity_id, (version, doc) in sorted(self._data.get(collection, {}).items())
            ]
        if predicate is None:
            return records
        return [r for r in records if predicate(r.data)]
