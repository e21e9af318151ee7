"""
Worker cancellation policy.

A worker may walk away from an assigned job only after a waiting period
(24 hours by default) has passed since the assignment. Inside the window
the check reports how long is left instead of raising, so callers can show
it to the worker.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from errandwork.bookings.models import Booking, BookingStatus
from errandwork.bookings.service import BookingService
from errandwork.config import MarketplaceConfig
from errandwork.errors import (
    CancellationWindowError,
    ErrorCode,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from errandwork.jobs.models import ApplicationStatus
from errandwork.notifications import NotificationDispatcher, NotificationKind
from errandwork.types import hours_between, utc_now

logger = logging.getLogger(__name__)

# Bookings a worker can no longer back out of
NOT_CANCELLABLE = frozenset(
    {
        BookingStatus.PENDING.value,
        BookingStatus.WORKER_COMPLETED.value,
        BookingStatus.COMPLETED.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.DISPUTED.value,
    }
)

# Statuses a worker cancellation may still refund from
WORKER_CANCELLABLE = frozenset(s.value for s in BookingStatus) - NOT_CANCELLABLE


@dataclass
class CancellationEligibility:
    """Answer to "may this worker cancel now?"."""

    can_cancel: bool
    reason: str
    code: Optional[str] = None
    hours_elapsed: float = 0.0
    hours_remaining: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_cancel": self.can_cancel,
            "reason": self.reason,
            "code": self.code,
            "hours_elapsed": round(self.hours_elapsed, 2),
            "hours_remaining": round(self.hours_remaining, 2),
        }


class WorkerCancellationPolicy:
    """Decides and performs worker-initiated cancellations."""

    def __init__(
        self,
        bookings: BookingService,
        config: Optional[MarketplaceConfig] = None,
        notifications: Optional[NotificationDispatcher] = None,
    ):
        self.bookings = bookings
        self.config = config or MarketplaceConfig()
        self.notifications = notifications or bookings.notifications

    def can_cancel(
        self,
        booking_id: str,
        worker_id: str,
        now: Optional[datetime] = None,
    ) -> CancellationEligibility:
        now = now or utc_now()
        booking = self.bookings.get_booking(booking_id)

        if booking.worker_id != worker_id:
            return CancellationEligibility(
                can_cancel=False,
                reason="Only the assigned worker can cancel this booking",
                code=ErrorCode.UNAUTHORIZED.value,
            )
        if booking.status in NOT_CANCELLABLE:
            return CancellationEligibility(
                can_cancel=False,
                reason=f"Cannot cancel a booking that is {booking.status}",
                code=ErrorCode.INVALID_STATE.value,
            )

        wait = self.config.worker_cancel_wait_hours
        elapsed = max(0.0, hours_between(self._assigned_at(booking), now))
        if elapsed < wait:
            remaining = wait - elapsed
            hours = math.ceil(remaining)
            return CancellationEligibility(
                can_cancel=False,
                reason=f"You must wait {hours} more hour{'s' if hours != 1 else ''} before cancelling",
                code=ErrorCode.CANCELLATION_WINDOW.value,
                hours_elapsed=elapsed,
                hours_remaining=remaining,
            )

        return CancellationEligibility(
            can_cancel=True,
            reason="Cancellation allowed",
            hours_elapsed=elapsed,
            hours_remaining=0.0,
        )

    def can_cancel_job(
        self,
        job_id: str,
        worker_id: str,
        now: Optional[datetime] = None,
    ) -> CancellationEligibility:
        """Same check, starting from the job the worker is assigned to."""
        if self.bookings.jobs is None:
            raise NotFoundError(f"Job {job_id} not found")
        job = self.bookings.jobs.get_job(job_id)
        if job.assigned_worker_id != worker_id or not job.booking_id:
            return CancellationEligibility(
                can_cancel=False,
                reason="You are not assigned to this job",
                code=ErrorCode.UNAUTHORIZED.value,
            )
        return self.can_cancel(job.booking_id, worker_id, now=now)

    def cancel_as_worker(
        self,
        booking_id: str,
        worker_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """Cancel after the waiting period: refund the client and reopen the job.

        The worker's application is marked declined so they are not
        offered the job again.
        """
        eligibility = self.can_cancel(booking_id, worker_id, now=now)
        if not eligibility.can_cancel:
            if eligibility.code == ErrorCode.UNAUTHORIZED.value:
                raise UnauthorizedError(eligibility.reason)
            if eligibility.code == ErrorCode.CANCELLATION_WINDOW.value:
                raise CancellationWindowError(
                    eligibility.reason,
                    details={
                        "hours_elapsed": round(eligibility.hours_elapsed, 2),
                        "hours_remaining": round(eligibility.hours_remaining, 2),
                    },
                )
            raise InvalidStateError(eligibility.reason)

        reason = reason or "worker_cancelled"
        result = self.bookings.escrow.refund_escrow(
            booking_id, "worker_cancelled", actor_id=worker_id, allowed_statuses=WORKER_CANCELLABLE
        )
        booking = result.booking
        if booking.job_id and self.bookings.jobs is not None:
            self.bookings.jobs.detach_worker(
                booking, worker_id, ApplicationStatus.DECLINED, reason, worker_cancelled=True
            )
        logger.info(
            f"Worker cancelled | booking={booking_id} | worker={worker_id} | "
            f"hours_elapsed={eligibility.hours_elapsed:.1f}"
        )

        self.notifications.send(
            booking.client_id,
            NotificationKind.WORKER_CANCELLED,
            booking_id=booking_id,
            job_id=booking.job_id,
            reason=reason,
        )
        self.notifications.send(
            worker_id, NotificationKind.BOOKING_CANCELLED, booking_id=booking_id
        )
        return booking

    def _assigned_at(self, booking: Booking) -> datetime:
        if booking.job_id and self.bookings.jobs is not None:
            job = self.bookings.jobs.storage.get_job(booking.job_id)
            if job is not None and job.booking_id == booking.id and job.assigned_at:
                return job.assigned_at
        return booking.confirmed_at or booking.held_at or booking.created_at
