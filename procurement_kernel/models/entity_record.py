"""
Module: procurement_kernel.models.entity_record
Responsibility: The single ORM table behind SqlEntityStore.  Each row holds
    one lifecycle entity (order, purchase, bon, inventory item, movement,
    notification, outbox entry, transition log record, sequence counter) as
    a JSON document, addressed by (collection, entity_key).
Architecture position: Kernel > Models.  Imports only db/base.py.

Invariants enforced:
    - (collection, entity_key) is unique.
    - ``version`` is SQLAlchemy's ``version_id_col``: every ORM flush of an
      UPDATE carries ``WHERE version = :expected`` and a zero-row result
      raises StaleDataError (mapped to ConcurrentModification by the store).
    - Records of APPEND_ONLY_COLLECTIONS are never updated or deleted
      (procurement_kernel.db.immutability).
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base

APPEND_ONLY_COLLECTIONS: frozenset[str] = frozenset({"stockMovements", "transitionLog"})


class EntityRecordModel(Base):
    """One stored document of a lifecycle collection."""

    __tablename__ = "entity_records"
    __table_args__ = (
        UniqueConstraint("collection", "entity_key", name="uq_entity_records_key"),
        Index("idx_entity_records_collection", "collection"),
    )

    collection: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_key: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<EntityRecord {self.collection}/{self.entity_key} v{self.version}>"
