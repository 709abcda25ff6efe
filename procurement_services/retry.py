"""
run_with_retry -- re-run a transition on retryable failures.

Retries only exceptions whose class sets ``retryable = True``
(ConcurrentModification, EntityLockTimeout, CollaboratorUnavailable).
Guard and stock errors propagate on the first attempt.  The callable must
re-read everything it needs, so a retry after ConcurrentModification sees
the fresh version.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from procurement_kernel.exceptions import ProcurementKernelError
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def run_with_retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute ``func`` with exponential backoff on retryable kernel errors.

    Raises:
        The last retryable error once ``attempts`` are exhausted, or any
        non-retryable error immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(attempts):
        try:
            return func()
        except ProcurementKernelError as exc:
            if not exc.retryable or attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            logger.info(
                "transition_retry",
                extra={
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "error_code": exc.code,
                    "delay_seconds": delay,
                },
            )
            sleep(delay)
    raise AssertionError("unreachable")
