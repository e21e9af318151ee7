"""Bookings: the lifecycle record for one unit of paid work.

Workflow transitions are in ``errandwork.bookings.service`` and the worker
cancellation rules in ``errandwork.bookings.cancellation``.
"""

from errandwork.bookings.models import (
    STATUS_TIMESTAMPS,
    VALID_BOOKING_TRANSITIONS,
    Booking,
    BookingStatus,
    PaymentStatus,
    check_status_consistency,
)
from errandwork.bookings.storage import BookingStorage, InMemoryBookingStorage

__all__ = [
    # Models
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "VALID_BOOKING_TRANSITIONS",
    "STATUS_TIMESTAMPS",
    "check_status_consistency",
    # Storage
    "BookingStorage",
    "InMemoryBookingStorage",
]
