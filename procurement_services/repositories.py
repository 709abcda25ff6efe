"""
Typed access to the document collections.

Each repository maps one EntityStore collection to its frozen domain model:
``get`` / ``find`` load with the record version attached, ``add`` and
``save`` write the model's document and return it carrying the new
version.  ``save`` always passes the version the model was loaded with, so
a concurrent write surfaces as ConcurrentModification.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any, Generic, TypeVar

from procurement_modules.bons.models import Bon
from procurement_modules.inventory.models import InventoryItem
from procurement_modules.notifications.models import Notification
from procurement_modules.orders.models import Order
from procurement_modules.purchases.models import Purchase
from procurement_services.entity_store import (
    BONS,
    INVENTORY,
    NOTIFICATIONS,
    ORDERS,
    PURCHASES,
    EntityStore,
    Record,
)

T = TypeVar("T")


class DocumentRepository(Generic[T]):
    """Loads and writes one model type in one collection."""

    def __init__(
        self,
        store: EntityStore,
        collection: str,
        model: Any,
        key: Callable[[T], str] = lambda entity: entity.id,
    ):
        self._store = store
        self.collection = collection
        self._model = model
        self._key = key

    def _load(self, record: Record) -> T:
        return self._model.from_document(record.data, record.version)

    def get(self, entity_id: str) -> T:
        return self._load(self._store.get(self.collection, entity_id))

    def find(self, entity_id: str) -> T | None:
        record = self._store.find(self.collection, entity_id)
        return None if record is None else self._load(record)

    def add(self, entity: T) -> T:
        record = self._store.create(self.collection, self._key(entity), entity.to_document())
        return replace(entity, version=record.version)

    def save(self, entity: T) -> T:
        record = self._store.update(
            self.collection,
            self._key(entity),
            entity.to_document(),
            entity.version,
        )
        return replace(entity, version=record.version)

    def list(self, predicate: Callable[[dict[str, Any]], bool] | None = None) -> list[T]:
        return [self._load(r) for r in self._store.query(self.collection, predicate)]


class Repositories:
    """The repositories of every mutable collection over one store."""

    def __init__(self, store: EntityStore):
        self.orders: DocumentRepository[Order] = DocumentRepository(store, ORDERS, Order)
        self.purchases: DocumentRepository[Purchase] = DocumentRepository(
            store, PURCHASES, Purchase
        )
        self.bons: DocumentRepository[Bon] = DocumentRepository(store, BONS, Bon)
        self.inventory: DocumentRepository[InventoryItem] = DocumentRepository(
            store, INVENTORY, InventoryItem, key=lambda item: item.product_ref
        )
        self.notifications: DocumentRepository[Notification] = DocumentRepository(
            store, NOTIFICATIONS, Notification
        )
