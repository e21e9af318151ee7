"""Booking storage layer."""

import copy
import logging
import threading
from typing import List, Optional, Protocol

from errandwork.bookings.models import Booking, BookingStatus, PaymentStatus
from errandwork.types import (
    RecordNotFoundError,
    UniqueConstraintError,
    VersionConflictError,
    utc_now,
)

logger = logging.getLogger(__name__)


class BookingStorage(Protocol):
    """Protocol for booking persistence backends."""

    def save_booking(self, booking: Booking) -> str:
        """Insert a booking. Returns the booking ID."""
        ...

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Get a booking by ID."""
        ...

    def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        client_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        job_id: Optional[str] = None,
        unsettled: bool = False,
        limit: int = 100,
    ) -> List[Booking]:
        """List bookings with equality filters, oldest first.

        ``unsettled`` keeps only released or refunded bookings whose ledger
        side has not been confirmed yet.
        """
        ...

    def update_booking(self, booking: Booking, expected_version: int) -> Booking:
        """Write a booking if the stored version matches. Returns the stored booking."""
        ...


def _value(v) -> Optional[str]:
    if v is None:
        return None
    return v.value if hasattr(v, "value") else v


class InMemoryBookingStorage:
    """In-memory booking storage for testing and local development."""

    def __init__(self):
        self._bookings: dict[str, Booking] = {}
        self._lock = threading.Lock()

    def save_booking(self, booking: Booking) -> str:
        with self._lock:
            if booking.id in self._bookings:
                raise UniqueConstraintError("bookings", "bookings_pkey", booking.id)
            stored = copy.deepcopy(booking)
            stored.updated_at = stored.updated_at or stored.created_at
            self._bookings[booking.id] = stored
        return booking.id

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            booking = self._bookings.get(booking_id)
            return copy.deepcopy(booking) if booking else None

    def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        client_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        job_id: Optional[str] = None,
        unsettled: bool = False,
        limit: int = 100,
    ) -> List[Booking]:
        with self._lock:
            bookings = [copy.deepcopy(b) for b in self._bookings.values()]

        filters = {
            "status": _value(status),
            "payment_status": _value(payment_status),
            "client_id": client_id,
            "worker_id": worker_id,
            "job_id": job_id,
        }
        for name, wanted in filters.items():
            if wanted is not None:
                bookings = [b for b in bookings if getattr(b, name) == wanted]
        if unsettled:
            bookings = [b for b in bookings if b.is_settled and b.settled_at is None]

        bookings.sort(key=lambda b: (b.created_at or utc_now(), b.id))
        return bookings[:limit]

    def update_booking(self, booking: Booking, expected_version: int) -> Booking:
        with self._lock:
            current = self._bookings.get(booking.id)
            if current is None:
                raise RecordNotFoundError("bookings", booking.id)
            if current.version != expected_version:
                raise VersionConflictError("bookings", booking.id, expected_version, current.version)
            stored = copy.deepcopy(booking)
            stored.version = expected_version + 1
            stored.updated_at = utc_now()
            self._bookings[booking.id] = stored
            return copy.deepcopy(stored)
