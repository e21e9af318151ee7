"""
Booking service.

Workflow transitions for a booking after it exists. Money only moves
through ``EscrowService``; this service decides who may ask for what and
when.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from errandwork.audit import StateTransition, TransitionLog
from errandwork.bookings.models import (
    STATUS_TIMESTAMPS,
    Booking,
    BookingStatus,
    PaymentStatus,
)
from errandwork.bookings.storage import BookingStorage
from errandwork.cas import update_with_retry
from errandwork.eligibility import AllowAllEligibility, WorkerEligibility
from errandwork.errors import (
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    WorkerIneligibleError,
)
from errandwork.escrow.service import EscrowResult, EscrowService
from errandwork.jobs.models import ApplicationStatus
from errandwork.notifications import NotificationDispatcher, NotificationKind
from errandwork.types import utc_now

logger = logging.getLogger(__name__)

# Statuses from which either party may ask to call the booking off
CANCELLATION_REQUESTABLE = frozenset({BookingStatus.CONFIRMED.value, BookingStatus.ACCEPTED.value})

# Statuses a client may refund outright (work not yet handed over)
CLIENT_REFUNDABLE = frozenset(
    {
        BookingStatus.CONFIRMED.value,
        BookingStatus.ACCEPTED.value,
        BookingStatus.IN_PROGRESS.value,
        BookingStatus.CANCELLATION_REQUESTED.value,
    }
)

DISPUTABLE = frozenset(
    {
        BookingStatus.CONFIRMED.value,
        BookingStatus.ACCEPTED.value,
        BookingStatus.IN_PROGRESS.value,
        BookingStatus.WORKER_COMPLETED.value,
        BookingStatus.CANCELLATION_REQUESTED.value,
    }
)

DISPUTE_RESOLUTIONS = ("release", "refund")


class BookingService:
    """Service for booking workflow transitions."""

    def __init__(
        self,
        storage: BookingStorage,
        escrow: EscrowService,
        jobs=None,
        eligibility: Optional[WorkerEligibility] = None,
        notifications: Optional[NotificationDispatcher] = None,
        transitions: Optional[TransitionLog] = None,
    ):
        self.storage = storage
        self.escrow = escrow
        # JobService; optional so direct bookings work without a job board
        self.jobs = jobs
        self.eligibility = eligibility or AllowAllEligibility()
        self.notifications = notifications or NotificationDispatcher()
        self.transitions = transitions

    # =========================================================================
    # Reads
    # =========================================================================

    def get_booking(self, booking_id: str, user_id: Optional[str] = None) -> Booking:
        """Get a booking. With user_id, the caller must be a party to it."""
        booking = self.storage.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if user_id is not None and booking.party_role(user_id) is None:
            raise UnauthorizedError("You are not a party to this booking")
        return booking

    def list_for_user(
        self,
        user_id: str,
        role: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        limit: int = 100,
    ) -> List[Booking]:
        """Bookings where the user is the client, the worker, or either."""
        if role not in (None, "client", "worker"):
            raise ValueError(f"Invalid role: {role}")
        results: List[Booking] = []
        if role in (None, "client"):
            results.extend(self.storage.list_bookings(client_id=user_id, status=status, limit=limit))
        if role in (None, "worker"):
            results.extend(self.storage.list_bookings(worker_id=user_id, status=status, limit=limit))
        results.sort(key=lambda b: b.created_at, reverse=True)
        return results[:limit]

    # =========================================================================
    # Direct bookings
    # =========================================================================

    def create_direct_booking(
        self,
        client_id: str,
        worker_id: str,
        amount,
        job_id: Optional[str] = None,
    ) -> Booking:
        """Book a worker directly. The booking waits for funding."""
        if not self.eligibility.is_verified_and_active(worker_id):
            raise WorkerIneligibleError("Worker is not verified or not active")
        booking = Booking(
            id=str(uuid.uuid4()),
            job_id=job_id,
            client_id=client_id,
            worker_id=worker_id,
            budget_amount=amount,
        )
        self.storage.save_booking(booking)
        self._record(booking, None, client_id)
        logger.info(f"Direct booking created | booking={booking.id} | amount={booking.budget_amount}")
        return booking

    def fund_booking(self, booking_id: str, client_id: str) -> Booking:
        return self.escrow.fund_booking(booking_id, client_id)

    # =========================================================================
    # Worker transitions
    # =========================================================================

    def accept_booking(self, booking_id: str, worker_id: str, now: Optional[datetime] = None) -> Booking:
        """Worker accepts a confirmed booking.

        Bookings created by selection are accepted through the job's
        acceptance window.
        """
        booking = self._require_worker(booking_id, worker_id)
        if booking.job_id and self.jobs is not None:
            application = self.jobs.application_for_booking(booking.job_id, booking.id)
            if application is not None:
                return self.jobs.accept_selection(application.id, worker_id, now=now).booking

        booking, _ = self._advance(
            booking_id, worker_id, BookingStatus.ACCEPTED, {BookingStatus.CONFIRMED.value}
        )
        self.notifications.send(
            booking.client_id, NotificationKind.SELECTION_ACCEPTED, booking_id=booking.id
        )
        return booking

    def start_work(self, booking_id: str, worker_id: str) -> Booking:
        self._require_worker(booking_id, worker_id)
        booking, changed = self._advance(
            booking_id, worker_id, BookingStatus.IN_PROGRESS, {BookingStatus.ACCEPTED.value}
        )
        if changed:
            if booking.job_id and self.jobs is not None:
                self.jobs.mark_in_progress(booking.job_id, booking.id, worker_id)
            self.notifications.send(
                booking.client_id, NotificationKind.WORK_STARTED, booking_id=booking.id
            )
        return booking

    def mark_worker_completed(self, booking_id: str, worker_id: str) -> Booking:
        """Worker reports the work done; the client is asked to confirm."""
        self._require_worker(booking_id, worker_id)
        booking, changed = self._advance(
            booking_id, worker_id, BookingStatus.WORKER_COMPLETED, {BookingStatus.IN_PROGRESS.value}
        )
        if changed:
            logger.info(f"Work marked complete | booking={booking.id} | worker={worker_id}")
            self.notifications.send(
                booking.client_id, NotificationKind.WORK_COMPLETED, booking_id=booking.id
            )
        return booking

    # =========================================================================
    # Client transitions
    # =========================================================================

    def confirm_work_completion(self, booking_id: str, client_id: str) -> EscrowResult:
        """Client confirms the work and the escrow is released to the worker."""
        booking = self._require_client(booking_id, client_id)
        if booking.payment_status != PaymentStatus.RELEASED.value:
            if booking.status != BookingStatus.WORKER_COMPLETED.value:
                raise InvalidStateError(
                    f"Cannot confirm completion for booking in status: {booking.status}"
                )
        return self.escrow.release_escrow(booking_id, "client_confirmed", actor_id=client_id)

    def request_full_refund(self, booking_id: str, client_id: str, reason: Optional[str] = None) -> EscrowResult:
        """Client calls the booking off before the work is handed over."""
        booking = self._require_client(booking_id, client_id)
        if booking.is_disputed:
            raise InvalidStateError("Booking is under dispute; payment is frozen")
        if booking.status not in CLIENT_REFUNDABLE and not booking.is_settled:
            raise InvalidStateError(f"Cannot refund booking in status: {booking.status}")

        result = self.escrow.refund_escrow(
            booking_id,
            reason or "client_refund",
            actor_id=client_id,
            allowed_statuses=CLIENT_REFUNDABLE,
        )
        if not result.already_settled:
            self._detach(result.booking, client_id, ApplicationStatus.UNPICKED, "client_refund")
            self.notifications.send(
                result.booking.worker_id,
                NotificationKind.BOOKING_CANCELLED,
                booking_id=booking_id,
                reason=reason,
            )
        return result

    # =========================================================================
    # Mutual cancellation
    # =========================================================================

    def request_cancellation(self, booking_id: str, user_id: str, reason: str) -> Booking:
        """Either party asks to call the booking off; the other must approve."""
        booking = self.get_booking(booking_id, user_id)
        if not reason or not reason.strip():
            raise ValueError("A cancellation reason is required")
        booking, _ = self._advance(
            booking_id,
            user_id,
            BookingStatus.CANCELLATION_REQUESTED,
            CANCELLATION_REQUESTABLE,
            cancellation_requested_by=user_id,
            cancellation_reason=reason,
        )
        other = booking.worker_id if user_id == booking.client_id else booking.client_id
        self.notifications.send(
            other, NotificationKind.CANCELLATION_REQUESTED, booking_id=booking.id, reason=reason
        )
        return booking

    def approve_cancellation(self, booking_id: str, user_id: str) -> EscrowResult:
        """The other party agrees; the client is refunded."""
        booking = self.get_booking(booking_id, user_id)
        if booking.status != BookingStatus.CANCELLATION_REQUESTED.value:
            raise InvalidStateError(f"No cancellation pending (status: {booking.status})")
        if booking.cancellation_requested_by == user_id:
            raise UnauthorizedError("The other party must approve the cancellation")

        result = self.escrow.refund_escrow(
            booking_id,
            "cancellation_approved",
            actor_id=user_id,
            allowed_statuses={BookingStatus.CANCELLATION_REQUESTED.value},
        )
        if not result.already_settled:
            worker_asked = booking.cancellation_requested_by == booking.worker_id
            self._detach(
                result.booking,
                user_id,
                ApplicationStatus.DECLINED if worker_asked else ApplicationStatus.UNPICKED,
                "cancellation_approved",
            )
            for party in (booking.client_id, booking.worker_id):
                self.notifications.send(party, NotificationKind.BOOKING_CANCELLED, booking_id=booking_id)
        return result

    # =========================================================================
    # Disputes
    # =========================================================================

    def raise_dispute(self, booking_id: str, user_id: str, reason: str) -> Booking:
        """Freeze the booking's payment until an admin resolves it."""
        booking = self.get_booking(booking_id, user_id)
        if not reason or not reason.strip():
            raise ValueError("A dispute reason is required")
        if not booking.is_held:
            raise InvalidStateError("Only bookings with held payment can be disputed")

        booking, changed = self._advance(
            booking_id,
            user_id,
            BookingStatus.DISPUTED,
            DISPUTABLE,
            dispute_reason=reason,
        )
        if changed:
            logger.warning(f"Dispute raised | booking={booking.id} | by={user_id}")
            for party in (booking.client_id, booking.worker_id):
                self.notifications.send(
                    party, NotificationKind.DISPUTE_RAISED, booking_id=booking.id, reason=reason
                )
        return booking

    def resolve_dispute(
        self,
        booking_id: str,
        resolution: str,
        actor_id: str,
        note: Optional[str] = None,
    ) -> EscrowResult:
        """Settle a disputed booking: ``release`` pays the worker, ``refund`` the client."""
        if resolution not in DISPUTE_RESOLUTIONS:
            raise ValueError(f"Invalid resolution: {resolution}")
        booking = self.get_booking(booking_id)
        if not booking.is_disputed and not booking.is_settled:
            raise InvalidStateError(f"Booking is not under dispute (status: {booking.status})")

        reason = f"dispute_resolved:{resolution}"
        if resolution == "release":
            result = self.escrow.release_escrow(booking_id, reason, actor_id=actor_id, allow_disputed=True)
        else:
            result = self.escrow.refund_escrow(booking_id, reason, actor_id=actor_id, allow_disputed=True)
            if not result.already_settled:
                self._detach(result.booking, actor_id, ApplicationStatus.DECLINED, reason)

        if not result.already_settled:
            logger.info(f"Dispute resolved | booking={booking_id} | resolution={resolution}")
            for party in (booking.client_id, booking.worker_id):
                self.notifications.send(
                    party,
                    NotificationKind.DISPUTE_RESOLVED,
                    booking_id=booking_id,
                    resolution=resolution,
                    note=note,
                )
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_worker(self, booking_id: str, worker_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.worker_id != worker_id:
            raise UnauthorizedError("Only the assigned worker can do this")
        return booking

    def _require_client(self, booking_id: str, client_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.client_id != client_id:
            raise UnauthorizedError("Only the client can do this")
        return booking

    def _detach(self, booking: Booking, actor_id: str, status: ApplicationStatus, reason: str) -> None:
        if booking.job_id and self.jobs is not None:
            self.jobs.detach_worker(booking, actor_id, status, reason)

    def _advance(
        self,
        booking_id: str,
        actor_id: str,
        to_status: BookingStatus,
        allowed_from: Iterable[str],
        **changes,
    ) -> Tuple[Booking, bool]:
        """Move a held booking along its workflow. Repeating a move is a no-op."""
        allowed = set(allowed_from)
        previous = {}

        def advance(current: Booking) -> Optional[Booking]:
            if current.status == to_status.value:
                return None
            if current.status not in allowed:
                raise InvalidStateError(
                    f"Cannot move booking from {current.status} to {to_status.value}"
                )
            previous["status"] = current.status
            stamp = STATUS_TIMESTAMPS.get(to_status.value)
            if stamp:
                changes[stamp] = utc_now()
            return replace(current, status=to_status.value, **changes)

        booking, changed = update_with_retry(
            load=lambda: self.storage.get_booking(booking_id),
            mutate=advance,
            save=self.storage.update_booking,
            what=f"booking {booking_id}",
        )
        if changed:
            self._record(booking, previous["status"], actor_id)
            logger.info(
                f"Booking transition | booking={booking_id} | {previous['status']} -> {booking.status}"
            )
        return booking, changed

    def _record(self, booking: Booking, from_status: Optional[str], actor_id: str, **metadata) -> None:
        if self.transitions is not None:
            self.transitions.save_transition(
                StateTransition.record("booking", booking.id, from_status, booking.status, actor_id, **metadata)
            )
