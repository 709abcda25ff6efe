"""
SqlEntityStore -- SQLAlchemy-backed EntityStore.

Responsibility:
    Persists lifecycle documents in the single ``entity_records`` table
    (procurement_kernel.models.entity_record).  One store transaction is one
    SQLAlchemy session; nested ``transaction()`` scopes on the same thread
    join the open session.

Architecture position:
    Services -- production persistence collaborator.  Uses the session
    factory from ``procurement_kernel.db.engine`` unless one is injected.

Invariants enforced:
    - Optimistic versioning through the mapper's ``version_id_col``: the
      UPDATE carries ``WHERE version = :expected`` and a zero-row result
      becomes ConcurrentModification.
    - The row is re-read with ``SELECT ... FOR UPDATE`` (honored by
      PostgreSQL, ignored by SQLite) before the version comparison.
    - Append-only collections: refused here before any SQL, and again by
      the ORM ``before_flush`` listener (procurement_kernel.db.immutability).

Failure modes:
    - ``OperationalError`` (connection loss, lock timeout, database locked)
      is translated to CollaboratorUnavailable; the transaction is rolled
      back and nothing was applied.
    - ``IntegrityError`` on insert becomes EntityAlreadyExists.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from procurement_kernel.db.engine import get_session_factory
from procurement_kernel.db.immutability import register_immutability_listeners
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    CollaboratorUnavailable,
    ConcurrentModification,
    EntityAlreadyExists,
    EntityNotFound,
    ImmutabilityViolation,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.entity_record import (
    APPEND_ONLY_COLLECTIONS,
    EntityRecordModel,
)
from procurement_services.entity_store import Predicate, Record

logger = get_logger("services.sql_store")


def _to_record(row: EntityRecordModel) -> Record:
    return Record(
        collection=row.collection,
        id=row.entity_key,
        version=row.version,
        data=copy.deepcopy(row.document),
    )


class SqlEntityStore:
    """
    EntityStore over SQLAlchemy 2.0 sessions.

    Contract:
        Implements ``procurement_services.entity_store.EntityStore``.  Safe
        to share across threads: each thread gets its own session for the
        duration of its outermost ``transaction()``.

    Non-goals:
        Does not cache documents between transactions.
    """

    collaborator_name = "entity_store"

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        self._factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._local = threading.local()
        register_immutability_listeners()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _current_session(self) -> Session | None:
        return getattr(self._local, "session", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._current_session() is not None:
            yield
            return

        session = self._factory()
        self._local.session = session
        logger.debug("store_transaction_started")
        try:
            with self._translate("transaction"):
                yield
                session.commit()
            logger.debug("store_transaction_committed")
        except Exception:
            session.rollback()
            logger.debug("store_transaction_rolled_back")
            raise
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _translate(self, operation: str) -> Iterator[None]:
        try:
            yield
        except OperationalError as exc:
            logger.warning(
                "store_unavailable",
                extra={"operation": operation, "detail": str(exc.orig)},
            )
            raise CollaboratorUnavailable(
                self.collaborator_name, operation, str(exc.orig)
            ) from exc

    def _session(self) -> Session:
        session = self._current_session()
        if session is None:
            raise RuntimeError("SqlEntityStore operation outside transaction()")
        return session

    def _load(
        self,
        collection: str,
        entity_id: str,
        *,
        for_update: bool = False,
    ) -> EntityRecordModel | None:
        stmt = (
            select(EntityRecordModel)
            .where(
                EntityRecordModel.collection == collection,
                EntityRecordModel.entity_key == entity_id,
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session().execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # EntityStore API
    # ------------------------------------------------------------------

    def find(self, collection: str, entity_id: str) -> Record | None:
        with self.transaction(), self._translate("find"):
            row = self._load(collection, entity_id)
            return None if row is None else _to_record(row)

    def get(self, collection: str, entity_id: str) -> Record:
        record = self.find(collection, entity_id)
        if record is None:
            raise EntityNotFound(collection, entity_id)
        return record

    def create(self, collection: str, entity_id: str, data: dict[str, Any]) -> Record:
        with self.transaction(), self._translate("create"):
            session = self._session()
            if self._load(collection, entity_id) is not None:
                raise EntityAlreadyExists(collection, entity_id)
            now = self._clock.now_utc()
            row = EntityRecordModel(
                collection=collection,
                entity_key=entity_id,
                document=copy.deepcopy(data),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                raise EntityAlreadyExists(collection, entity_id) from exc
            return _to_record(row)

    def update(
        self,
        collection: str,
        entity_id: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> Record:
        if collection in APPEND_ONLY_COLLECTIONS:
            raise ImmutabilityViolation(
                collection, entity_id, f"{collection} records are append-only"
            )
        with self.transaction(), self._translate("update"):
            session = self._session()
            row = self._load(collection, entity_id, for_update=True)
            if row is None:
                raise EntityNotFound(collection, entity_id)
            if row.version != expected_version:
                raise ConcurrentModification(
                    collection, entity_id, expected_version, row.version
                )
            document = copy.deepcopy(row.document)
            document.update(copy.deepcopy(patch))
            row.document = document
            row.updated_at = self._clock.now_utc()
            try:
                session.flush()
            except StaleDataError as exc:
                raise ConcurrentModification(
                    collection, entity_id, expected_version, None
                ) from exc
            return _to_record(row)

    def query(self, collection: str, predicate: Predicate | None = None) -> list[Record]:
        with self.transaction(), self._translate("query"):
            rows = self._session().execute(
                select(EntityRecordModel)
                .where(EntityRecordModel.collection == collection)
                .order_by(EntityRecordModel.entity_key)
                .execution_options(populate_existing=True)
            ).scalars()
            records = [_to_record(row) for row in rows]
        if predicate is None:
            return records
        return [r for r in records if predicate(r.data)]
