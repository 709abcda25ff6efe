"""
Document conversion helpers shared by the module models.

Stored documents are plain JSON: Decimals as canonical strings, datetimes
and dates as ISO-8601, enums by value.  Both the in-memory test store and
the SQL store hold exactly these documents.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from procurement_kernel.domain.values import decimal_to_str


def dec(value: Decimal | None) -> str | None:
    return None if value is None else decimal_to_str(value)


def parse_dec(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def ts(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def parse_ts(value: str | None) -> datetime | None:
    return None if value is None else datetime.fromisoformat(value)


def day(value: date | None) -> str | None:
    return None if value is None else value.isoformat()


def parse_day(value: str | None) -> date | None:
    return None if value is None else date.fromisoformat(value)
