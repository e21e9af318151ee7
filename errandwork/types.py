"""
Shared types for errandwork.

Utility functions and storage-level exceptions used by every aggregate
(jobs, bookings, wallets, auto-release). The domain error taxonomy lives in
``errandwork.errors``; the exceptions here are raised by storage backends
and translated by the services.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Get current timestamp as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ParseDatetimeError(ValueError):
    """Structured parse failure for ISO datetime strings."""

    def __init__(self, value: str, cause: Exception):
        super().__init__(f"Invalid ISO datetime string: {value!r}")
        self.value = value
        self.cause = cause


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO datetime string (or pass a datetime through).

    Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (TypeError, ValueError) as exc:
            raise ParseDatetimeError(value, exc) from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime for persistence."""
    if dt is None:
        return None
    return dt.isoformat()


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed wall-clock hours from start to end (may be negative)."""
    return (end - start).total_seconds() / 3600.0


TWO_PLACES = Decimal("0.01")


def to_amount(value: Any) -> Decimal:
    """Coerce a money value to a two-place Decimal.

    Floats go through ``str`` so 0.1 stays 0.10 rather than a binary
    approximation.
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# === Storage Errors ===


class VersionConflictError(Exception):
    """Raised when a record's version doesn't match the expected version.

    This indicates a concurrent modification - another process updated the
    record between when we read it and when we tried to save our changes.
    """

    def __init__(
        self,
        table: str,
        record_id: str,
        expected_version: int,
        actual_version: Optional[int],
    ):
        self.table = table
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {table}/{record_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


class DuplicateTransactionError(Exception):
    """Raised when a ledger entry with the same id already exists.

    Transaction ids double as idempotency keys, so this means the money
    movement was already recorded.
    """

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction already recorded: {transaction_id}")


class RecordNotFoundError(Exception):
    """Raised by storage when a conditional update targets a missing record."""

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"{table}/{record_id} not found")


class UniqueConstraintError(Exception):
    """Raised when an insert would break a uniqueness rule."""

    def __init__(self, table: str, constraint: str, detail: str = ""):
        self.table = table
        self.constraint = constraint
        super().__init__(f"{table}: {constraint} violated{': ' + detail if detail else ''}")
