"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failed transition must tell the caller WHICH rule failed and WHAT the
entity looks like right now.  Callers (presentation layers, retry loops,
operational tooling) branch on the exception TYPE and its ``code``, never on
message text:

    try:
        engine.approve_order(order_id, actor=head)
    except GuardViolation as e:
        show_error(e.guard, e.reason, e.current_state)
    except ConcurrentModification:
        reload_and_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementKernelError (base)
    |
    +-- TransitionError
    |   +-- GuardViolation
    |   +-- InsufficientStock
    |   +-- InvalidQuantity
    |   +-- IdempotencyConflict
    |
    +-- StoreError
    |   +-- EntityNotFound
    |   +-- EntityAlreadyExists
    |   +-- ImmutabilityViolation
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModification
    |   +-- EntityLockTimeout
    |
    +-- CollaboratorError
        +-- CollaboratorUnavailable
        +-- DeliveryError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                      | When Raised
--------------|---------------------------|------------------------------------
Transition    | GUARD_VIOLATION           | A transition precondition failed
              | INSUFFICIENT_STOCK        | Decrement exceeds quantity on hand
              | INVALID_QUANTITY          | Quantity not valid for its unit
              | IDEMPOTENCY_CONFLICT      | Same key reused with another payload
--------------|---------------------------|------------------------------------
Store         | ENTITY_NOT_FOUND          | Collection has no such id
              | ENTITY_ALREADY_EXISTS     | Create with an id already taken
              | IMMUTABILITY_VIOLATION    | Update of an append-only record
--------------|---------------------------|------------------------------------
Concurrency   | CONCURRENT_MODIFICATION   | Stale version on update (reload)
              | ENTITY_LOCK_TIMEOUT       | Entity lock not acquired in time
--------------|---------------------------|------------------------------------
Collaborator  | COLLABORATOR_UNAVAILABLE  | Store or sink unreachable (retry)
              | DELIVERY_ERROR            | Notification publish failed (queued)

===============================================================================
RETRY POLICY
===============================================================================

``retryable`` is a class attribute.  ``procurement_services.retry`` only
re-runs operations whose exception has ``retryable = True``.  Guard and stock
errors are never retried automatically: the caller must correct its input.
"""

from typing import Any


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and a ``retryable`` flag for the retry helper.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"
    retryable: bool = False


# Transition-related exceptions


class TransitionError(ProcurementKernelError):
    """Base exception for lifecycle transition failures."""

    code: str = "TRANSITION_ERROR"


class GuardViolation(TransitionError):
    """
    A precondition for a lifecycle transition was not met.

    Carries the failed guard, the transition, and a snapshot of the
    entity's authoritative state at the time of the check.  Never retried
    automatically.
    """

    code: str = "GUARD_VIOLATION"

    def __init__(
        self,
        transition: str,
        guard: str,
        reason: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        current_state: str | None = None,
    ):
        self.transition = transition
        self.guard = guard
        self.reason = reason
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        target = f" on {entity_type} {entity_id}" if entity_id else ""
        state = f" (current state: {current_state})" if current_state else ""
        super().__init__(
            f"Transition '{transition}'{target} refused by guard "
            f"'{guard}': {reason}{state}"
        )


class InsufficientStock(TransitionError):
    """A stock decrement exceeds the quantity on hand; never clamped."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        transition: str,
        product_ref: str,
        requested: Any,
        available: Any,
    ):
        self.transition = transition
        self.product_ref = product_ref
        self.requested = requested
        self.available = available
        self.current_state = f"on_hand={available}"
        super().__init__(
            f"Transition '{transition}' needs {requested} of {product_ref} "
            f"but only {available} on hand"
        )


class InvalidQuantity(TransitionError):
    """A quantity is negative, non-numeric, or fractional for a count unit."""

    code: str = "INVALID_QUANTITY"

    def __init__(
        self,
        value: Any,
        unit: str | None,
        reason: str,
        *,
        transition: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        current_state: str | None = None,
    ):
        self.value = value
        self.unit = unit
        self.reason = reason
        self.transition = transition
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        prefix = f"Transition '{transition}': " if transition else ""
        super().__init__(f"{prefix}Invalid quantity {value!r} ({unit}): {reason}")


class IdempotencyConflict(TransitionError):
    """
    An idempotency key was reused with a different payload.

    The first application of the key stands; the second request is refused
    rather than silently treated as a replay.
    """

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, expected_hash: str, received_hash: str):
        self.idempotency_key = idempotency_key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {idempotency_key} already used with payload "
            f"{expected_hash[:12]}, received {received_hash[:12]}"
        )


# Store-related exceptions


class StoreError(ProcurementKernelError):
    """Base exception for entity store errors."""

    code: str = "STORE_ERROR"


class EntityNotFound(StoreError):
    """No entity with the given id exists in the collection."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection}/{entity_id} not found")


class EntityAlreadyExists(StoreError):
    """Create was called with an id that is already taken."""

    code: str = "ENTITY_ALREADY_EXISTS"

    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection}/{entity_id} already exists")


class ImmutabilityViolation(StoreError):
    """Attempted to modify a record of an append-only collection."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, collection: str, entity_id: str, reason: str):
        self.collection = collection
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {collection}/{entity_id}: {reason}"
        )


# Concurrency-related exceptions


class ConcurrencyError(ProcurementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class ConcurrentModification(ConcurrencyError):
    """
    Optimistic version check failed: the entity changed since it was read.

    The caller should reload the entity and retry the transition.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        collection: str,
        entity_id: str,
        expected_version: int | None,
        actual_version: int | None,
    ):
        self.collection = collection
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification on {collection}/{entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


class EntityLockTimeout(ConcurrencyError):
    """Another transition held the entity lock past the configured timeout."""

    code: str = "ENTITY_LOCK_TIMEOUT"

    def __init__(self, lock_key: str, timeout_seconds: float):
        self.lock_key = lock_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not lock {lock_key} within {timeout_seconds:g}s"
        )


# Collaborator-related exceptions


class CollaboratorError(ProcurementKernelError):
    """Base exception for failures of external collaborators."""

    code: str = "COLLABORATOR_ERROR"


class CollaboratorUnavailable(CollaboratorError):
    """
    The persistence or notification backend is unreachable or timed out.

    Retryable with backoff.  A transition that raised this was NOT applied:
    the store did not confirm the write.
    """

    code: str = "COLLABORATOR_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, collaborator: str, operation: str, detail: str = ""):
        self.collaborator = collaborator
        self.operation = operation
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"{collaborator} unavailable during {operation}{suffix}")


class DeliveryError(CollaboratorError):
    """
    A notification could not be published.

    Never fails the owning transition; the notification stays queued in the
    outbox for a later retry.
    """

    code: str = "DELIVERY_ERROR"
    retryable: bool = True

    def __init__(self, notification_id: str, reason: str):
        self.notification_id = notification_id
        self.reason = reason
        super().__init__(f"Delivery of notification {notification_id} failed: {reason}")
