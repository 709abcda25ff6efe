"""
Injectable time source.

Services never read the wall clock themselves: ``created_at``,
``approved_at``, ``received_at``, movement dates and the year in every
``PO-2025-001`` style id all come from the Clock handed to them.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

EPOCH_FOR_TESTS = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current time."""

    def now_utc(self) -> datetime:
        return self.now().astimezone(UTC)


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """Frozen clock that only moves when a test moves it."""

    def __init__(self, start: datetime | None = None):
        self._current = start or EPOCH_FOR_TESTS

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> None:
        if seconds < 0:
            raise ValueError(f"clock cannot go back {-seconds}s")
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """One second forward; returns the new time."""
        self.advance(1)
        return self._current
