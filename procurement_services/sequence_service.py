"""
SequenceService -- human-readable id allocation via versioned counter records.

Responsibility:
    Allocates ``<prefix>-<year>-<seq>`` ids (``PO-2025-001``) for orders,
    purchases, bons, stock movements and notifications.  Each (kind, year)
    pair has one counter record in the ``sequences`` collection.

Invariants enforced:
    - Sequences are strictly monotonic per (kind, year): the counter record
      is the sole source of truth, updated with its expected version.
    - Transactional: allocation runs inside the caller's store transaction,
      so a rolled-back transition does not consume its ids.

Failure modes:
    - ConcurrentModification when two transactions bump the same counter;
      the transition is retried by ``run_with_retry``.
"""

from __future__ import annotations

import re

from procurement_config.schema import IdFormat
from procurement_kernel.domain.clock import Clock
from procurement_kernel.logging_config import get_logger
from procurement_services.entity_store import SEQUENCES, EntityStore, lock_key

logger = get_logger("services.sequence")

_GENERATED_ID = re.compile(r"^(?P<prefix>.+)-(?P<year>\d{4})-(?P<value>\d+)$")


def sequence_sort_key(entity_id: str) -> tuple[str, int, int, str]:
    """Sort key ordering generated ids by their number, not their text.

    The zero padding only covers ``sequence_width`` digits, so as text
    ``MV-2025-1000`` would sort before ``MV-2025-101``.  Ids that are not
    generated (product refs) sort by text.
    """
    match = _GENERATED_ID.match(entity_id)
    if match is None:
        return (entity_id, 0, 0, entity_id)
    return (match["prefix"], int(match["year"]), int(match["value"]), entity_id)


class SequenceService:
    """
    Contract:
        ``next_id(kind)`` returns the next id for ``kind`` (one of
        ``order``, ``purchase``, ``bon``, ``movement``, ``notification``).

    Non-goals:
        Does NOT open its own transaction -- the caller controls boundaries.
    """

    ORDER = "order"
    PURCHASE = "purchase"
    BON = "bon"
    MOVEMENT = "movement"
    NOTIFICATION = "notification"

    def __init__(self, store: EntityStore, clock: Clock, id_format: IdFormat):
        self._store = store
        self._clock = clock
        self._format = id_format

    @staticmethod
    def counter_lock_key(kind: str) -> str:
        return lock_key(SEQUENCES, kind)

    def next_value(self, kind: str) -> tuple[int, int]:
        """Increment the counter of ``kind`` for the current year; return (year, value)."""
        year = self._clock.now_utc().year
        counter_id = f"{kind}:{year}"
        record = self._store.find(SEQUENCES, counter_id)
        if record is None:
            value = 1
            self._store.create(SEQUENCES, counter_id, {"kind": kind, "year": year, "value": value})
        else:
            value = int(record.data["value"]) + 1
            self._store.update(SEQUENCES, counter_id, {"value": value}, record.version)
        logger.debug("sequence_allocated", extra={"sequence_name": counter_id, "value": value})
        return year, value

    def next_id(self, kind: str) -> str:
        year, value = self.next_value(kind)
        prefix = getattr(self._format, kind)
        return f"{prefix}-{year}-{value:0{self._format.sequence_width}d}"
