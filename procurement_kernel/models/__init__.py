"""ORM models for the SQL-backed entity store."""

from procurement_kernel.models.entity_record import (
    APPEND_ONLY_COLLECTIONS,
    EntityRecordModel,
)

__all__ = ["APPEND_ONLY_COLLECTIONS", "EntityRecordModel"]
