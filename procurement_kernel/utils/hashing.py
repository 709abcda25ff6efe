"""
Payload fingerprints for idempotency records.

A replayed transition is recognised by comparing the SHA-256 of its
payload with the one stored under the same key, so equal payloads must
serialize identically: keys sorted, no whitespace, and quantities in
their canonical text form (``25`` and ``25.00`` are the same quantity).
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_kernel.domain.values import decimal_to_str


def _encode(value: Any) -> Any:
    match value:
        case Decimal():
            return decimal_to_str(value)
        case date():
            return value.isoformat()
        case Enum():
            return value.value
        case UUID():
            return str(value)
        case set() | frozenset():
            return sorted(value)
    raise TypeError(f"cannot fingerprint {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON form of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode()).hexdigest()
