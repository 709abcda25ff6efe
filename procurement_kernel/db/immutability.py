"""
ORM-Level Append-Only Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is the evidence behind every inventory quantity: the sum of
a product's StockMovements must equal its on-hand quantity.  If a movement
could be edited after the fact, the ledger would stop proving anything.  The
same holds for the transition log that backs idempotent replays.

The SQL store refuses updates to these collections before issuing SQL; this
module is the second line, catching any code path that modifies or deletes
an append-only record through the ORM:

    session.flush()
         |
         v
    [before_flush] --> _check_append_only() --> ImmutabilityViolation
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED COLLECTIONS
===============================================================================

Collection      | Why
----------------|---------------------------------------------------------
stockMovements  | Ledger entries; corrections are new adjustment movements
transitionLog   | Idempotency records; replays must see the first result

===============================================================================
USAGE
===============================================================================

Registered by SqlEntityStore on construction (idempotent):

    from procurement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm import Session

from procurement_kernel.exceptions import ImmutabilityViolation
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.entity_record import (
    APPEND_ONLY_COLLECTIONS,
    EntityRecordModel,
)

logger = get_logger("db.immutability")


def _block(record: EntityRecordModel, operation: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "collection": record.collection,
            "entity_id": record.entity_key,
            "operation": operation,
        },
    )
    raise ImmutabilityViolation(
        collection=record.collection,
        entity_id=record.entity_key,
        reason=f"{record.collection} records are append-only ({operation} refused)",
    )


def _check_append_only(session, flush_context, instances):
    """Refuse UPDATE and DELETE of append-only records before the flush plan runs."""
    for obj in list(session.dirty):
        if (
            isinstance(obj, EntityRecordModel)
            and obj.collection in APPEND_ONLY_COLLECTIONS
            and session.is_modified(obj)
        ):
            _block(obj, "UPDATE")

    for obj in list(session.deleted):
        if isinstance(obj, EntityRecordModel) and obj.collection in APPEND_ONLY_COLLECTIONS:
            _block(obj, "DELETE")


def register_immutability_listeners() -> None:
    """Register the append-only listener on all sessions (idempotent)."""
    if not event.contains(Session, "before_flush", _check_append_only):
        event.listen(Session, "before_flush", _check_append_only)


def unregister_immutability_listeners() -> None:
    """
    Remove the append-only listener.

    WARNING: Only use this in tests that intentionally bypass the guard.
    """
    if event.contains(Session, "before_flush", _check_append_only):
        event.remove(Session, "before_flush", _check_append_only)
