"""
EntityStore -- the persistence collaborator contract.

Responsibility:
    Declares the protocol every persistence backend implements and the
    collection names the engine uses.  The engine owns no storage of its
    own: it reads and writes versioned JSON documents through this API.

Architecture position:
    Services -- collaborator boundary.  Implemented by
    ``procurement_services.sql_store.SqlEntityStore`` (production) and by an
    in-memory store under ``tests/support``.

Invariants enforced:
    - ``create`` returns version 1; every successful ``update`` increments
      the version by exactly one.
    - ``update`` with a stale ``expected_version`` raises
      ConcurrentModification and writes nothing.
    - ``update`` of an APPEND_ONLY_COLLECTIONS record raises
      ImmutabilityViolation.
    - ``transaction()`` is re-entrant: an inner scope joins the outer one,
      and all writes inside the outermost scope commit or none do.
    - ``query`` returns records ordered by entity id.

Failure modes:
    - EntityNotFound / EntityAlreadyExists for missing or duplicate ids.
    - CollaboratorUnavailable when the backend cannot confirm an operation.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from procurement_kernel.models.entity_record import APPEND_ONLY_COLLECTIONS

ORDERS = "orders"
PURCHASES = "purchases"
BONS = "bons"
INVENTORY = "inventory"
STOCK_MOVEMENTS = "stockMovements"
NOTIFICATIONS = "notifications"
OUTBOX = "outbox"
TRANSITION_LOG = "transitionLog"
SEQUENCES = "sequences"

ALL_COLLECTIONS: tuple[str, ...] = (
    ORDERS,
    PURCHASES,
    BONS,
    INVENTORY,
    STOCK_MOVEMENTS,
    NOTIFICATIONS,
    OUTBOX,
    TRANSITION_LOG,
    SEQUENCES,
)

Predicate = Callable[[dict[str, Any]], bool]


def lock_key(collection: str, entity_id: str) -> str:
    """Name of the entity lock guarding ``collection/entity_id``."""
    return f"{collection}/{entity_id}"


@dataclass(frozen=True)
class Record:
    """A stored document together with its optimistic version."""

    collection: str
    id: str
    version: int
    data: dict[str, Any]


@runtime_checkable
class EntityStore(Protocol):
    """Versioned document store used by every lifecycle service."""

    def get(self, collection: str, entity_id: str) -> Record:
        """Return the record or raise EntityNotFound."""
        ...

    def find(self, collection: str, entity_id: str) -> Record | None:
        """Return the record or None."""
        ...

    def create(self, collection: str, entity_id: str, data: dict[str, Any]) -> Record:
        """Insert a new record at version 1 or raise EntityAlreadyExists."""
        ...

    def update(
        self,
        collection: str,
        entity_id: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> Record:
        """Shallow-merge ``patch`` into the document if the version matches."""
        ...

    def query(self, collection: str, predicate: Predicate | None = None) -> list[Record]:
        """All records of ``collection`` whose document satisfies ``predicate``."""
        ...

    def transaction(self) -> AbstractContextManager[None]:
        """Atomic unit of work; re-entrant."""
        ...


__all__ = [
    "ALL_COLLECTIONS",
    "APPEND_ONLY_COLLECTIONS",
    "BONS",
    "EntityStore",
    "INVENTORY",
    "NOTIFICATIONS",
    "ORDERS",
    "OUTBOX",
    "PURCHASES",
    "Predicate",
    "Record",
    "SEQUENCES",
    "STOCK_MOVEMENTS",
    "TRANSITION_LOG",
    "lock_key",
]
