"""
Idempotency key generation utilities.

A client that may retry a transition (double click, network retry) sends a
request key with it.  The engine scopes that key to the transition and the
entity it targets, so the same request key reused on a different entity is
a different record, and records the payload hash under the scoped key.
"""


def generate_idempotency_key(
    transition: str,
    entity_id: str,
    request_key: str,
) -> str:
    """
    Scope a client request key to a transition and entity.

    Format: transition:entity_id:request_key

    Example:
        >>> generate_idempotency_key("deliver", "PUR-2025-001", "rcv-42")
        'deliver:PUR-2025-001:rcv-42'
    """
    return f"{transition}:{entity_id}:{request_key}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse an idempotency key into its components.

    Returns:
        Tuple of (transition, entity_id, request_key).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
