"""
Booking data models.

A Booking carries two status fields:
- ``status`` is workflow-authoritative (who does what next),
- ``payment_status`` is money-authoritative (where the escrowed funds are).

The pair is validated on construction, so a write that would leave them
out of step (a completed booking with held money, a refunded booking that
is still in progress) cannot be built, let alone stored.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from errandwork.types import format_datetime, parse_datetime, to_amount, utc_now


class BookingStatus(str, Enum):
    """Booking workflow status."""

    PENDING = "pending"  # Direct booking awaiting funding
    CONFIRMED = "confirmed"  # Funds held; waiting on the worker
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    WORKER_COMPLETED = "worker_completed"  # Worker says done; client to confirm
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    CANCELLATION_REQUESTED = "cancellation_requested"


class PaymentStatus(str, Enum):
    """Where the booking's money is."""

    PENDING = "pending"  # Nothing held yet
    HELD = "held"
    RELEASED = "released"  # Paid to the worker (terminal)
    REFUNDED = "refunded"  # Returned to the client (terminal)


TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value}
)
SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.RELEASED.value, PaymentStatus.REFUNDED.value})

_NON_TERMINAL = {
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.ACCEPTED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.WORKER_COMPLETED,
    BookingStatus.CANCELLATION_REQUESTED,
}

# Valid workflow transitions. Completion and cancellation are only
# reachable through the escrow primitives, which settle money in the same write.
VALID_BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {
        BookingStatus.ACCEPTED,
        BookingStatus.CANCELLATION_REQUESTED,
        BookingStatus.CANCELLED,
        BookingStatus.DISPUTED,
    },
    BookingStatus.ACCEPTED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLATION_REQUESTED,
        BookingStatus.CANCELLED,
        BookingStatus.DISPUTED,
        BookingStatus.COMPLETED,  # auto-release cap on stuck bookings
    },
    BookingStatus.IN_PROGRESS: {
        BookingStatus.WORKER_COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.DISPUTED,
        BookingStatus.COMPLETED,  # auto-release cap on stuck bookings
    },
    BookingStatus.WORKER_COMPLETED: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.DISPUTED,
    },
    BookingStatus.CANCELLATION_REQUESTED: {BookingStatus.CANCELLED, BookingStatus.DISPUTED},
    # Disputes leave only through resolution
    BookingStatus.DISPUTED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# Timestamp stamped when a booking enters each status
STATUS_TIMESTAMPS = {
    BookingStatus.CONFIRMED.value: "confirmed_at",
    BookingStatus.ACCEPTED.value: "accepted_at",
    BookingStatus.IN_PROGRESS.value: "started_at",
    BookingStatus.WORKER_COMPLETED.value: "worker_completed_at",
    BookingStatus.COMPLETED.value: "completed_at",
    BookingStatus.CANCELLED.value: "cancelled_at",
    BookingStatus.DISPUTED.value: "disputed_at",
    BookingStatus.CANCELLATION_REQUESTED.value: "cancellation_requested_at",
}


def check_status_consistency(status: str, payment_status: str) -> Optional[str]:
    """Return a description of the mismatch, or None if the pair is legal."""
    if status == BookingStatus.COMPLETED.value:
        if payment_status != PaymentStatus.RELEASED.value:
            return "completed booking must have released payment"
    elif status == BookingStatus.CANCELLED.value:
        if payment_status not in (PaymentStatus.REFUNDED.value, PaymentStatus.PENDING.value):
            return "cancelled booking must be refunded or never funded"
    elif status == BookingStatus.PENDING.value:
        if payment_status != PaymentStatus.PENDING.value:
            return "pending booking cannot hold funds"
    else:
        if payment_status != PaymentStatus.HELD.value:
            return f"{status} booking must have held payment"
    return None


@dataclass
class Booking:
    """The canonical lifecycle record for one unit of paid work.

    Attributes:
        id: Unique identifier (also the root of ledger idempotency keys)
        job_id: Job this booking was created from (None for direct bookings)
        client_id: Paying client
        worker_id: Worker being paid
        budget_amount: Amount held in escrow
        status: Workflow status
        payment_status: Money status
    """

    id: str
    client_id: str
    worker_id: str
    budget_amount: Decimal
    job_id: Optional[str] = None
    status: str = BookingStatus.PENDING.value
    payment_status: str = PaymentStatus.PENDING.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    held_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    worker_completed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    cancellation_requested_at: Optional[datetime] = None
    cancellation_requested_by: Optional[str] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    dispute_reason: Optional[str] = None
    release_reason: Optional[str] = None
    platform_fee: Optional[Decimal] = None  # commission taken on release
    settled_at: Optional[datetime] = None  # set once the ledger side of a release or refund is written
    version: int = 1

    def __post_init__(self):
        if isinstance(self.status, BookingStatus):
            self.status = self.status.value
        if isinstance(self.payment_status, PaymentStatus):
            self.payment_status = self.payment_status.value
        if self.status not in {s.value for s in BookingStatus}:
            raise ValueError(f"Invalid status: {self.status}")
        if self.payment_status not in {s.value for s in PaymentStatus}:
            raise ValueError(f"Invalid payment status: {self.payment_status}")
        if self.client_id == self.worker_id:
            raise ValueError("Client and worker must be different users")
        self.budget_amount = to_amount(self.budget_amount)
        if self.budget_amount <= 0:
            raise ValueError("Budget must be positive")
        mismatch = check_status_consistency(self.status, self.payment_status)
        if mismatch:
            raise ValueError(f"Inconsistent booking state: {mismatch}")
        if self.platform_fee is not None:
            self.platform_fee = to_amount(self.platform_fee)
            if self.platform_fee < 0 or self.platform_fee >= self.budget_amount:
                raise ValueError("Platform fee must be below the budget")
        if self.settled_at is not None and not self.is_settled:
            raise ValueError("Only a released or refunded booking can be marked settled")
        if self.created_at is None:
            self.created_at = utc_now()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES

    @property
    def is_settled(self) -> bool:
        return self.payment_status in SETTLED_PAYMENT_STATUSES

    @property
    def is_held(self) -> bool:
        return self.payment_status == PaymentStatus.HELD.value

    @property
    def is_disputed(self) -> bool:
        return self.status == BookingStatus.DISPUTED.value

    def can_transition_to(self, new_status: BookingStatus) -> bool:
        """Check if transition to new status is valid."""
        current = BookingStatus(self.status)
        return BookingStatus(new_status) in VALID_BOOKING_TRANSITIONS.get(current, set())

    def party_role(self, user_id: str) -> Optional[str]:
        """'client', 'worker' or None."""
        if user_id == self.client_id:
            return "client"
        if user_id == self.worker_id:
            return "worker"
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "job_id": self.job_id,
            "client_id": self.client_id,
            "worker_id": self.worker_id,
            "budget_amount": str(self.budget_amount),
            "status": self.status,
            "payment_status": self.payment_status,
            "cancellation_requested_by": self.cancellation_requested_by,
            "cancellation_reason": self.cancellation_reason,
            "dispute_reason": self.dispute_reason,
            "release_reason": self.release_reason,
            "platform_fee": None if self.platform_fee is None else str(self.platform_fee),
            "version": self.version,
        }
        for name in _DATETIME_FIELDS:
            data[name] = format_datetime(getattr(self, name))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Booking":
        kwargs = {name: parse_datetime(data.get(name)) for name in _DATETIME_FIELDS}
        return cls(
            id=data["id"],
            job_id=data.get("job_id"),
            client_id=data["client_id"],
            worker_id=data["worker_id"],
            budget_amount=data["budget_amount"],
            status=data.get("status", BookingStatus.PENDING.value),
            payment_status=data.get("payment_status", PaymentStatus.PENDING.value),
            cancellation_requested_by=data.get("cancellation_requested_by"),
            cancellation_reason=data.get("cancellation_reason"),
            dispute_reason=data.get("dispute_reason"),
            release_reason=data.get("release_reason"),
            platform_fee=data.get("platform_fee"),
            version=data.get("version", 1),
            **kwargs,
        )


_DATETIME_FIELDS = (
    "created_at",
    "updated_at",
    "held_at",
    "confirmed_at",
    "accepted_at",
    "started_at",
    "worker_completed_at",
    "completed_at",
    "cancelled_at",
    "disputed_at",
    "cancellation_requested_at",
    "released_at",
    "refunded_at",
    "settled_at",
)
