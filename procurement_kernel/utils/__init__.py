"""Utility modules for the procurement kernel."""

from procurement_kernel.utils.hashing import canonicalize_json, hash_payload
from procurement_kernel.utils.idempotency import generate_idempotency_key

__all__ = [
    "hash_payload",
    "canonicalize_json",
    "generate_idempotency_key",
]
