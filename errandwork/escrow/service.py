"""
Escrow service.

The two settlement primitives, ``release_escrow`` and ``refund_escrow``, are
the only code paths that take a booking out of ``held``. Client
confirmation, auto-release, dispute resolution, worker decline, worker
cancellation and selection expiry all funnel through them.

Each primitive:
1. flips the booking (status and payment status in one conditional write),
   which is the gate: only one caller can move a booking out of ``held``;
2. writes the ledger entries, whose ids make them idempotent;
3. stamps ``settled_at`` once the ledger side is written;
4. notifies, without letting a notification failure propagate.

Calling a primitive on a booking that is already settled the same way is a
successful no-op. It still replays step 2, so a settlement interrupted
between steps 1 and 3 is completed by the retry. The auto-release sweep
retries every booking left without ``settled_at``.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from errandwork.audit import StateTransition, TransitionLog
from errandwork.bookings.models import Booking, BookingStatus, PaymentStatus
from errandwork.bookings.storage import BookingStorage
from errandwork.cas import update_with_retry
from errandwork.errors import InvalidStateError, NotFoundError, UnauthorizedError
from errandwork.jobs.models import JobStatus
from errandwork.jobs.storage import JobStorage
from errandwork.logging_config import log_refund, log_release
from errandwork.notifications import NotificationDispatcher, NotificationKind
from errandwork.types import utc_now
from errandwork.wallet.models import ZERO
from errandwork.wallet.service import LedgerResult, ReleaseResult, WalletService

logger = logging.getLogger(__name__)

# Statuses from which escrow may be released to the worker
RELEASABLE_STATUSES = frozenset(
    {
        BookingStatus.ACCEPTED.value,
        BookingStatus.IN_PROGRESS.value,
        BookingStatus.WORKER_COMPLETED.value,
    }
)


def _value(status) -> str:
    return status.value if hasattr(status, "value") else status


@dataclass
class EscrowResult:
    """Outcome of a release or refund."""

    booking: Booking
    already_settled: bool
    release: Optional[ReleaseResult] = None
    refund: Optional[LedgerResult] = None


class EscrowService:
    """Holds, releases and refunds booking funds."""

    def __init__(
        self,
        bookings: BookingStorage,
        wallets: WalletService,
        jobs: Optional[JobStorage] = None,
        transitions: Optional[TransitionLog] = None,
        notifications: Optional[NotificationDispatcher] = None,
    ):
        self.bookings = bookings
        self.wallets = wallets
        self.jobs = jobs
        self.transitions = transitions
        self.notifications = notifications or NotificationDispatcher()

    # =========================================================================
    # Funding
    # =========================================================================

    def fund_booking(self, booking_id: str, client_id: str) -> Booking:
        """Hold funds for a direct booking and confirm it.

        Direct bookings (no job) start pending/pending. Funding moves them to
        confirmed/held.
        """
        booking = self.bookings.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.client_id != client_id:
            raise UnauthorizedError("Only the client can fund this booking")
        if booking.status != BookingStatus.PENDING.value:
            raise InvalidStateError(f"Cannot fund booking in status: {booking.status}")

        self.wallets.hold(client_id, booking.id, booking.budget_amount)

        def confirm(current: Booking) -> Optional[Booking]:
            if current.status != BookingStatus.PENDING.value:
                raise InvalidStateError(f"Booking changed to {current.status} while funding")
            now = utc_now()
            return replace(
                current,
                status=BookingStatus.CONFIRMED.value,
                payment_status=PaymentStatus.HELD.value,
                held_at=now,
                confirmed_at=now,
            )

        try:
            funded, _ = self._update(booking_id, confirm)
        except InvalidStateError:
            # Booking moved on while the hold was in flight; give the money back
            self.wallets.refund(client_id, booking.id, booking.budget_amount)
            raise
        self._record(funded, BookingStatus.PENDING.value, client_id, action="funded")
        return funded

    # =========================================================================
    # Settlement
    # =========================================================================

    def release_escrow(
        self,
        booking_id: str,
        reason: str,
        actor_id: str = "system",
        allow_disputed: bool = False,
    ) -> EscrowResult:
        """Pay the held amount to the worker, less the platform fee, and complete the booking.

        Idempotent: a booking whose release is already on the ledger returns
        ``already_settled``. A released booking whose ledger write failed is
        finished by the next call.
        """
        previous_status = {}
        config = self.wallets.config

        def flip(current: Booking) -> Optional[Booking]:
            if current.payment_status == PaymentStatus.RELEASED.value:
                return None
            if current.payment_status == PaymentStatus.REFUNDED.value:
                raise InvalidStateError("Booking was already refunded; cannot release")
            if current.payment_status != PaymentStatus.HELD.value:
                raise InvalidStateError("No funds are held for this booking")
            if current.is_disputed and not allow_disputed:
                raise InvalidStateError("Booking is under dispute; payment is frozen")
            if not current.is_disputed and current.status not in RELEASABLE_STATUSES:
                raise InvalidStateError(f"Cannot release payment for booking in status: {current.status}")
            previous_status["value"] = current.status
            now = utc_now()
            return replace(
                current,
                status=BookingStatus.COMPLETED.value,
                payment_status=PaymentStatus.RELEASED.value,
                completed_at=now,
                released_at=now,
                release_reason=reason,
                platform_fee=config.platform_fee(current.budget_amount),
            )

        booking, changed = self._update(booking_id, flip)
        if changed:
            self._record(booking, previous_status["value"], actor_id, reason=reason)
        ledger = self.wallets.release(
            booking.client_id,
            booking.worker_id,
            booking.id,
            booking.budget_amount,
            fee=booking.platform_fee or ZERO,
        )
        booking, first_settlement = self._mark_settled(booking.id)
        if not first_settlement:
            logger.info(f"Release skipped, already released | booking={booking_id}")
            return EscrowResult(booking=booking, already_settled=True, release=ledger)

        reason = booking.release_reason or reason
        payout = booking.budget_amount - (booking.platform_fee or ZERO)
        self._complete_job(booking, actor_id)
        log_release(booking.id, booking.client_id, booking.worker_id, booking.budget_amount, reason)
        logger.info(
            f"Escrow released | booking={booking.id} | worker={booking.worker_id} | "
            f"amount={booking.budget_amount} | fee={booking.platform_fee} | reason={reason}"
        )
        self.notifications.send(
            booking.worker_id,
            NotificationKind.PAYMENT_RELEASED,
            booking_id=booking.id,
            amount=str(payout),
        )
        self.notifications.send(
            booking.client_id,
            NotificationKind.PAYMENT_RELEASED,
            booking_id=booking.id,
            amount=str(booking.budget_amount),
        )
        return EscrowResult(booking=booking, already_settled=False, release=ledger)

    def refund_escrow(
        self,
        booking_id: str,
        reason: str,
        actor_id: str = "system",
        allow_disputed: bool = False,
        allowed_statuses: Optional[Iterable[str]] = None,
    ) -> EscrowResult:
        """Return the held amount to the client and cancel the booking.

        Idempotent: a booking already refunded returns ``already_settled``.
        A booking that was never funded is simply cancelled.

        ``allowed_statuses`` restricts which statuses the booking may be in
        at the moment of the conditional write. Callers that checked
        eligibility on an earlier read pass it so a booking that moved on in
        between is rejected instead of refunded.
        """
        previous_status = {}
        allowed = None if allowed_statuses is None else frozenset(_value(s) for s in allowed_statuses)

        def flip(current: Booking) -> Optional[Booking]:
            if current.payment_status == PaymentStatus.REFUNDED.value:
                return None
            if current.payment_status == PaymentStatus.RELEASED.value:
                raise InvalidStateError("Booking was already paid out; cannot refund")
            if current.status == BookingStatus.CANCELLED.value:
                return None
            if current.is_disputed and not allow_disputed:
                raise InvalidStateError("Booking is under dispute; payment is frozen")
            if allowed is not None and current.status not in allowed:
                raise InvalidStateError(f"Cannot refund booking in status: {current.status}")
            previous_status["value"] = current.status
            now = utc_now()
            funded = current.payment_status == PaymentStatus.HELD.value
            return replace(
                current,
                status=BookingStatus.CANCELLED.value,
                payment_status=PaymentStatus.REFUNDED.value if funded else PaymentStatus.PENDING.value,
                cancelled_at=now,
                refunded_at=now if funded else None,
                cancellation_reason=reason,
            )

        booking, changed = self._update(booking_id, flip)
        if changed:
            self._record(booking, previous_status["value"], actor_id, reason=reason)
        if booking.payment_status != PaymentStatus.REFUNDED.value:
            # Never funded; nothing to move
            return EscrowResult(booking=booking, already_settled=not changed)

        ledger = self.wallets.refund(booking.client_id, booking.id, booking.budget_amount)
        booking, first_settlement = self._mark_settled(booking.id)
        if not first_settlement:
            logger.info(f"Refund skipped, already settled | booking={booking_id}")
            return EscrowResult(booking=booking, already_settled=True, refund=ledger)

        reason = booking.cancellation_reason or reason
        log_refund(booking.id, booking.client_id, booking.budget_amount, reason)
        logger.info(
            f"Escrow refunded | booking={booking.id} | client={booking.client_id} | "
            f"amount={booking.budget_amount} | reason={reason}"
        )
        self.notifications.send(
            booking.client_id,
            NotificationKind.PAYMENT_REFUNDED,
            booking_id=booking.id,
            amount=str(booking.budget_amount),
            reason=reason,
        )
        return EscrowResult(booking=booking, already_settled=False, refund=ledger)

    def finish_settlement(self, booking_id: str) -> EscrowResult:
        """Complete the ledger side of a booking that was released or refunded
        but whose ledger write did not go through."""
        booking = self.bookings.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.payment_status == PaymentStatus.RELEASED.value:
            return self.release_escrow(booking_id, booking.release_reason or "settlement_retry")
        if booking.payment_status == PaymentStatus.REFUNDED.value:
            return self.refund_escrow(booking_id, booking.cancellation_reason or "settlement_retry")
        raise InvalidStateError(f"Booking {booking_id} has no settlement to finish")

    def list_unsettled(self, limit: int = 100) -> List[Booking]:
        return self.bookings.list_bookings(unsettled=True, limit=limit)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _mark_settled(self, booking_id: str):
        """Stamp ``settled_at``. Returns (booking, True) only for the call that stamped it."""

        def stamp(current: Booking) -> Optional[Booking]:
            if current.settled_at is not None:
                return None
            return replace(current, settled_at=utc_now())

        return self._update(booking_id, stamp)

    def _update(self, booking_id: str, mutate):
        return update_with_retry(
            load=lambda: self.bookings.get_booking(booking_id),
            mutate=mutate,
            save=self.bookings.update_booking,
            what=f"booking {booking_id}",
        )

    def _record(self, booking: Booking, from_status: str, actor_id: str, **metadata) -> None:
        if self.transitions is None:
            return
        self.transitions.save_transition(
            StateTransition.record(
                "booking",
                booking.id,
                from_status,
                booking.status,
                actor_id,
                payment_status=booking.payment_status,
                **metadata,
            )
        )

    def _complete_job(self, booking: Booking, actor_id: str) -> None:
        """Mark the booking's job completed once its escrow is released."""
        if not booking.job_id or self.jobs is None:
            return

        job_from = {}

        def complete(job):
            if job.booking_id != booking.id:
                return None
            if job.status not in (JobStatus.ASSIGNED.value, JobStatus.IN_PROGRESS.value):
                return None
            job_from["status"] = job.status
            return replace(job, status=JobStatus.COMPLETED.value)

        job, changed = update_with_retry(
            load=lambda: self.jobs.get_job(booking.job_id),
            mutate=complete,
            save=self.jobs.update_job,
            what=f"job {booking.job_id}",
        )
        if changed and self.transitions is not None:
            self.transitions.save_transition(
                StateTransition.record(
                    "job", job.id, job_from["status"], job.status, actor_id, booking_id=booking.id
                )
            )
