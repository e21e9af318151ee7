"""
Job service.

Business logic for job postings, applications and worker selection.

Selection touches four records (job, wallet, booking, application). The
job's open→assigned flip is written first and is the only guarded step
that decides the race; a second client request for the same job re-reads
the job, sees it is no longer open and fails with NoLongerAvailable.
Later steps that fail unwind what came before (refund, reopen).

Time-boxed rules (acceptance window, posting expiry) are checked lazily:
on the next call that touches the record, or by ``expire_selections`` /
``expire_jobs`` when the scheduler runs them.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from errandwork.audit import StateTransition, TransitionLog
from errandwork.bookings.models import Booking, BookingStatus, PaymentStatus
from errandwork.bookings.storage import BookingStorage
from errandwork.cas import update_with_retry
from errandwork.config import MarketplaceConfig
from errandwork.eligibility import AllowAllEligibility, WorkerEligibility
from errandwork.errors import (
    AlreadyAppliedError,
    InsufficientFundsError,
    InvalidStateError,
    JobNotOpenError,
    MarketplaceError,
    NoLongerAvailableError,
    NotFoundError,
    SelectionExpiredError,
    UnauthorizedError,
    WorkerIneligibleError,
)
from errandwork.escrow.service import EscrowService
from errandwork.jobs.models import (
    ApplicationStatus,
    Job,
    JobApplication,
    JobStatus,
)
from errandwork.jobs.storage import JobStorage
from errandwork.notifications import NotificationDispatcher, NotificationKind
from errandwork.types import UniqueConstraintError, utc_now
from errandwork.wallet.service import WalletService

logger = logging.getLogger(__name__)


@dataclass
class SelectionResult:
    """Records written by a successful selection."""

    job: Job
    application: JobApplication
    booking: Booking
    accept_by: datetime


@dataclass
class AcceptanceResult:
    application: JobApplication
    booking: Booking


@dataclass
class ExpiryResult:
    """Outcome of an expiry sweep."""

    expired: int = 0
    failed: int = 0
    ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class JobService:
    """Service for job postings, applications and worker selection."""

    def __init__(
        self,
        storage: JobStorage,
        bookings: BookingStorage,
        escrow: EscrowService,
        wallets: WalletService,
        eligibility: Optional[WorkerEligibility] = None,
        notifications: Optional[NotificationDispatcher] = None,
        transitions: Optional[TransitionLog] = None,
        config: Optional[MarketplaceConfig] = None,
    ):
        self.storage = storage
        self.bookings = bookings
        self.escrow = escrow
        self.wallets = wallets
        self.eligibility = eligibility or AllowAllEligibility()
        self.notifications = notifications or NotificationDispatcher()
        self.transitions = transitions
        self.config = config or MarketplaceConfig()

    @property
    def acceptance_window(self) -> timedelta:
        return timedelta(hours=self.config.acceptance_window_hours)

    # =========================================================================
    # Job Operations
    # =========================================================================

    def create_job(
        self,
        client_id: str,
        title: str,
        budget_max,
        budget_min=None,
        category: str = "general",
        description: str = "",
        expires_at: Optional[datetime] = None,
    ) -> Job:
        """Post a new job. Expires after ``default_job_expiry_days`` unless given."""
        now = utc_now()
        if expires_at is not None and expires_at <= now:
            raise ValueError("Expiry must be in the future")
        job = Job(
            id=str(uuid.uuid4()),
            client_id=client_id,
            title=title,
            category=category,
            description=description,
            budget_min=budget_min,
            budget_max=budget_max,
            expires_at=expires_at or now + timedelta(days=self.config.default_job_expiry_days),
            created_at=now,
        )
        self.storage.save_job(job)
        self._record_job(job, None, client_id)
        logger.info(f"Job created | job={job.id} | client={client_id} | budget={job.budget_max}")
        return job

    def get_job(self, job_id: str) -> Job:
        job = self.storage.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def list_jobs(self, **filters) -> List[Job]:
        return self.storage.list_jobs(**filters)

    def get_application(self, application_id: str) -> JobApplication:
        application = self.storage.get_application(application_id)
        if application is None:
            raise NotFoundError(f"Application {application_id} not found")
        return application

    def list_applications(self, job_id: str, client_id: Optional[str] = None) -> List[JobApplication]:
        """List a job's applications. If client_id is given it must own the job."""
        job = self.get_job(job_id)
        if client_id is not None and job.client_id != client_id:
            raise UnauthorizedError("Only the job client can view applications")
        return self.storage.list_applications(job_id=job_id, limit=1000)

    def cancel_job(self, job_id: str, client_id: str) -> Job:
        """Cancel an open posting. Assigned jobs are cancelled through their booking."""
        job = self.get_job(job_id)
        if job.client_id != client_id:
            raise UnauthorizedError("Only the job client can cancel this job")

        def cancel(current: Job) -> Optional[Job]:
            if current.status == JobStatus.CANCELLED.value:
                return None
            if not current.is_open:
                raise InvalidStateError(
                    f"Cannot cancel job in status: {current.status}. Cancel the booking instead."
                )
            return replace(current, status=JobStatus.CANCELLED.value)

        job, changed = self._update_job(job_id, cancel)
        if changed:
            self._record_job(job, JobStatus.OPEN.value, client_id)
        return job

    # =========================================================================
    # Applications
    # =========================================================================

    def apply(
        self,
        job_id: str,
        worker_id: str,
        message: str = "",
        now: Optional[datetime] = None,
    ) -> JobApplication:
        """Apply to an open job."""
        now = now or utc_now()
        job = self.get_job(job_id)

        if job.client_id == worker_id:
            raise UnauthorizedError("Cannot apply to your own job")
        if not job.is_open:
            raise JobNotOpenError(f"Job is not accepting applications (status: {job.status})")
        if job.is_expired_at(now):
            raise JobNotOpenError("Job posting has expired")
        if not self.eligibility.is_verified_and_active(worker_id):
            raise WorkerIneligibleError(
                "Your account must be verified and active before you can apply for jobs"
            )

        existing = self.storage.list_applications(job_id=job_id, worker_id=worker_id, limit=1000)
        if any(a.is_active for a in existing):
            raise AlreadyAppliedError("You have already applied to this job")

        application = JobApplication(
            id=str(uuid.uuid4()),
            job_id=job_id,
            worker_id=worker_id,
            message=message,
            applied_at=now,
        )
        try:
            self.storage.save_application(application)
        except UniqueConstraintError as e:
            raise AlreadyAppliedError("You have already applied to this job") from e

        def count(current: Job) -> Job:
            return replace(current, applicant_count=current.applicant_count + 1)

        self._update_job(job_id, count)
        self._record_application(application, None, worker_id)
        logger.info(f"Application created | job={job_id} | worker={worker_id}")

        self.notifications.send(
            job.client_id,
            NotificationKind.APPLICATION_RECEIVED,
            job_id=job_id,
            application_id=application.id,
            worker_id=worker_id,
        )
        return application

    def withdraw(self, application_id: str, worker_id: str) -> JobApplication:
        """Withdraw a pending application."""
        application = self.get_application(application_id)
        if application.worker_id != worker_id:
            raise UnauthorizedError("Only the applicant can withdraw this application")

        def withdraw(current: JobApplication) -> JobApplication:
            if current.status != ApplicationStatus.PENDING.value:
                raise InvalidStateError(f"Cannot withdraw application in status: {current.status}")
            return replace(current, status=ApplicationStatus.WITHDRAWN.value, withdrawn_at=utc_now())

        application, _ = self._update_application(application_id, withdraw)
        self._record_application(application, ApplicationStatus.PENDING.value, worker_id)
        logger.info(f"Application withdrawn | app={application_id} | worker={worker_id}")
        return application

    # =========================================================================
    # Selection
    # =========================================================================

    def select_worker(
        self,
        job_id: str,
        application_id: str,
        client_id: str,
        now: Optional[datetime] = None,
    ) -> SelectionResult:
        """Pick an applicant, hold the budget and create the booking."""
        now = now or utc_now()
        job = self.get_job(job_id)
        if job.client_id != client_id:
            raise UnauthorizedError("Only the job client can select a worker")
        self._check_selectable(job, now)

        application = self.storage.get_application(application_id)
        if application is None or application.job_id != job_id:
            raise NotFoundError("Application not found for this job")
        if application.status != ApplicationStatus.PENDING.value:
            raise InvalidStateError(f"Application is already {application.status}")
        if not self.eligibility.is_verified_and_active(application.worker_id):
            raise WorkerIneligibleError("Worker is not verified or not active")

        amount: Decimal = job.hold_amount
        available = self.wallets.available_balance(client_id)
        if available < amount:
            raise InsufficientFundsError(amount, available)

        booking_id = str(uuid.uuid4())

        # Step 1: the gate. Only one request can flip open -> assigned.
        def assign(current: Job) -> Job:
            self._check_selectable(current, now)
            return replace(
                current,
                status=JobStatus.ASSIGNED.value,
                assigned_worker_id=application.worker_id,
                booking_id=booking_id,
                assigned_at=now,
            )

        job, _ = self._update_job(job_id, assign)

        # Step 2: hold the money
        try:
            self.wallets.hold(client_id, booking_id, amount)
        except Exception:
            self._reopen_job(job_id, booking_id, client_id, reason="hold_failed")
            raise

        # Step 3: the booking
        booking = Booking(
            id=booking_id,
            job_id=job_id,
            client_id=client_id,
            worker_id=application.worker_id,
            budget_amount=amount,
            status=BookingStatus.CONFIRMED.value,
            payment_status=PaymentStatus.HELD.value,
            created_at=now,
            held_at=now,
            confirmed_at=now,
        )
        try:
            self.bookings.save_booking(booking)
        except Exception:
            logger.error(f"Booking could not be stored, returning hold | job={job_id} | booking={booking_id}")
            self.wallets.refund(client_id, booking_id, amount)
            self._reopen_job(job_id, booking_id, client_id, reason="booking_failed")
            raise

        # Step 4: the application
        def select(current: JobApplication) -> JobApplication:
            if current.status != ApplicationStatus.PENDING.value:
                raise InvalidStateError(f"Application is already {current.status}")
            return replace(
                current,
                status=ApplicationStatus.SELECTED.value,
                selected_at=now,
                booking_id=booking_id,
            )

        try:
            application, _ = self._update_application(application_id, select)
        except Exception:
            logger.warning(
                f"Application changed during selection, unwinding | job={job_id} | app={application_id}"
            )
            self.escrow.refund_escrow(booking_id, "selection_aborted", actor_id=client_id)
            self._reopen_job(job_id, booking_id, client_id, reason="selection_aborted")
            raise

        self._record_job(job, JobStatus.OPEN.value, client_id, booking_id=booking_id)
        self._record_booking(booking, None, client_id)
        self._record_application(application, ApplicationStatus.PENDING.value, client_id)
        accept_by = now + self.acceptance_window
        logger.info(
            f"Worker selected | job={job_id} | worker={application.worker_id} | "
            f"booking={booking_id} | amount={amount}"
        )

        self.notifications.send(
            application.worker_id,
            NotificationKind.WORKER_SELECTED,
            job_id=job_id,
            booking_id=booking_id,
            accept_by=accept_by.isoformat(),
        )
        self.notifications.send(
            client_id,
            NotificationKind.WORKER_SELECTED,
            job_id=job_id,
            booking_id=booking_id,
            worker_id=application.worker_id,
        )
        return SelectionResult(job=job, application=application, booking=booking, accept_by=accept_by)

    def accept_selection(
        self,
        application_id: str,
        worker_id: str,
        now: Optional[datetime] = None,
    ) -> AcceptanceResult:
        """Selected worker confirms within the acceptance window."""
        now = now or utc_now()
        application = self.get_application(application_id)
        if application.worker_id != worker_id:
            raise UnauthorizedError("Only the selected worker can accept this job")
        if application.status != ApplicationStatus.SELECTED.value:
            raise InvalidStateError(f"Cannot accept application in status: {application.status}")

        deadline = application.selected_at + self.acceptance_window
        if now >= deadline:
            self._expire_selection(application_id, now)
            raise SelectionExpiredError(
                "The acceptance window for this job has expired",
                details={"expired_at": deadline.isoformat()},
            )

        def accept(current: JobApplication) -> JobApplication:
            if current.status != ApplicationStatus.SELECTED.value:
                raise InvalidStateError(f"Cannot accept application in status: {current.status}")
            return replace(current, status=ApplicationStatus.ACCEPTED.value, accepted_at=now)

        application, _ = self._update_application(application_id, accept)

        def confirm(current: Booking) -> Booking:
            if current.status != BookingStatus.CONFIRMED.value:
                raise InvalidStateError(f"Cannot accept booking in status: {current.status}")
            return replace(current, status=BookingStatus.ACCEPTED.value, accepted_at=now)

        try:
            booking, _ = update_with_retry(
                load=lambda: self.bookings.get_booking(application.booking_id),
                mutate=confirm,
                save=self.bookings.update_booking,
                what=f"booking {application.booking_id}",
            )
        except Exception:
            logger.warning(
                f"Booking moved during acceptance, restoring selection | app={application_id} | "
                f"booking={application.booking_id}"
            )
            self._restore_selection(application_id, now)
            raise
        self._record_application(application, ApplicationStatus.SELECTED.value, worker_id)
        self._record_booking(booking, BookingStatus.CONFIRMED.value, worker_id)
        logger.info(f"Selection accepted | app={application_id} | booking={booking.id}")

        self.notifications.send(
            booking.client_id,
            NotificationKind.SELECTION_ACCEPTED,
            job_id=application.job_id,
            booking_id=booking.id,
            worker_id=worker_id,
        )
        return AcceptanceResult(application=application, booking=booking)

    def decline_selection(
        self,
        application_id: str,
        worker_id: str,
        reason: Optional[str] = None,
    ) -> JobApplication:
        """Selected worker turns the job down: refund the client and reopen the job."""
        application = self.get_application(application_id)
        if application.worker_id != worker_id:
            raise UnauthorizedError("Only the selected worker can decline this job")

        def decline(current: JobApplication) -> JobApplication:
            if current.status != ApplicationStatus.SELECTED.value:
                raise InvalidStateError(f"Cannot decline application in status: {current.status}")
            return replace(current, status=ApplicationStatus.DECLINED.value, declined_at=utc_now())

        application, _ = self._update_application(application_id, decline)
        self._record_application(application, ApplicationStatus.SELECTED.value, worker_id, reason=reason)

        result = self.escrow.refund_escrow(application.booking_id, "worker_declined", actor_id=worker_id)
        self._reopen_job(application.job_id, application.booking_id, worker_id, reason="worker_declined")
        logger.info(f"Selection declined | app={application_id} | booking={application.booking_id}")

        self.notifications.send(
            result.booking.client_id,
            NotificationKind.SELECTION_DECLINED,
            job_id=application.job_id,
            worker_id=worker_id,
            reason=reason,
        )
        return application

    def unpick_worker(
        self, job_id: str, client_id: str, now: Optional[datetime] = None
    ) -> JobApplication:
        """Client takes back a selection the worker has not accepted yet.

        A selection whose window already lapsed is expired instead; the
        outcome (refund, reopened job) is the same.
        """
        now = now or utc_now()
        job = self.get_job(job_id)
        if job.client_id != client_id:
            raise UnauthorizedError("Only the job client can unpick a worker")
        if job.status != JobStatus.ASSIGNED.value or not job.booking_id:
            raise InvalidStateError(f"No worker to unpick (job status: {job.status})")

        application = self.application_for_booking(job_id, job.booking_id)
        if application is None:
            raise NotFoundError("Selected application not found for this job")
        if (
            application.status == ApplicationStatus.SELECTED.value
            and application.selected_at + self.acceptance_window <= now
        ):
            self._expire_selection(application.id, now)
            return self.get_application(application.id)

        def unpick(current: JobApplication) -> JobApplication:
            if current.status == ApplicationStatus.ACCEPTED.value:
                raise InvalidStateError("Worker has already accepted; cancel the booking instead")
            if current.status != ApplicationStatus.SELECTED.value:
                raise InvalidStateError(f"Cannot unpick application in status: {current.status}")
            return replace(current, status=ApplicationStatus.UNPICKED.value, unpicked_at=now)

        application, _ = self._update_application(application.id, unpick)
        self._record_application(application, ApplicationStatus.SELECTED.value, client_id)
        self.escrow.refund_escrow(job.booking_id, "client_unpicked", actor_id=client_id)
        self._reopen_job(job_id, job.booking_id, client_id, reason="client_unpicked")
        logger.info(f"Worker unpicked | job={job_id} | worker={application.worker_id}")

        self.notifications.send(
            application.worker_id, NotificationKind.WORKER_UNPICKED, job_id=job_id
        )
        return application

    # =========================================================================
    # Sweeps
    # =========================================================================

    def expire_selections(self, now: Optional[datetime] = None) -> ExpiryResult:
        """Unpick every selection whose acceptance window has passed."""
        now = now or utc_now()
        cutoff = now - self.acceptance_window
        stale = self.storage.list_applications(
            status=ApplicationStatus.SELECTED,
            selected_before=cutoff + timedelta(microseconds=1),
            limit=self.config.sweep_batch_limit,
        )
        result = ExpiryResult()
        for application in stale:
            try:
                if self._expire_selection(application.id, now):
                    result.expired += 1
                    result.ids.append(application.id)
            except MarketplaceError as e:
                result.failed += 1
                result.errors.append(f"{application.id}: {e}")
                logger.error(f"Selection expiry failed | app={application.id} | error={e}")

        if result.expired or result.failed:
            logger.info(f"Selection sweep | expired={result.expired} | failed={result.failed}")
        return result

    def expire_jobs(self, now: Optional[datetime] = None) -> ExpiryResult:
        """Mark open postings past their expiry as expired."""
        now = now or utc_now()
        candidates = self.storage.list_jobs(
            status=JobStatus.OPEN,
            expires_before=now,
            limit=self.config.sweep_batch_limit,
        )
        result = ExpiryResult()
        for job in candidates:

            def expire(current: Job) -> Optional[Job]:
                if not current.is_open or not current.is_expired_at(now):
                    return None
                return replace(current, status=JobStatus.EXPIRED.value)

            try:
                expired, changed = self._update_job(job.id, expire)
            except MarketplaceError as e:
                result.failed += 1
                result.errors.append(f"{job.id}: {e}")
                logger.error(f"Job expiry failed | job={job.id} | error={e}")
                continue
            if not changed:
                continue
            result.expired += 1
            result.ids.append(job.id)
            self._record_job(expired, JobStatus.OPEN.value, "system:job_expiry")
            self.notifications.send(
                expired.client_id, NotificationKind.JOB_EXPIRED, job_id=job.id, title=job.title
            )

        if result.expired or result.failed:
            logger.info(f"Job expiry sweep | expired={result.expired} | failed={result.failed}")
        return result

    # =========================================================================
    # Booking hooks
    # =========================================================================

    def mark_in_progress(self, job_id: str, booking_id: str, actor_id: str) -> Optional[Job]:
        """Move the job along when its booking starts."""

        def start(current: Job) -> Optional[Job]:
            if current.booking_id != booking_id or current.status != JobStatus.ASSIGNED.value:
                return None
            return replace(current, status=JobStatus.IN_PROGRESS.value)

        job, changed = self._update_job(job_id, start)
        if changed:
            self._record_job(job, JobStatus.ASSIGNED.value, actor_id, booking_id=booking_id)
        return job

    def detach_worker(
        self,
        booking: Booking,
        actor_id: str,
        application_status: ApplicationStatus,
        reason: str,
        worker_cancelled: bool = False,
    ) -> Optional[Job]:
        """Close the worker's application and reopen the job after a refund.

        The application history stays: a declined worker cannot reapply.
        """
        if not booking.job_id:
            return None
        application = self.application_for_booking(booking.job_id, booking.id)
        if application is not None:
            stamp = {
                ApplicationStatus.DECLINED.value: "declined_at",
                ApplicationStatus.UNPICKED.value: "unpicked_at",
            }[ApplicationStatus(application_status).value]

            def close(current: JobApplication) -> Optional[JobApplication]:
                if not current.is_bound:
                    return None
                return replace(
                    current,
                    status=ApplicationStatus(application_status).value,
                    **{stamp: utc_now()},
                )

            closed, changed = self._update_application(application.id, close)
            if changed:
                self._record_application(closed, application.status, actor_id, reason=reason)

        extra = {}
        if worker_cancelled:
            extra = {"worker_cancelled_at": utc_now(), "worker_cancel_reason": reason}
        return self._reopen_job(booking.job_id, booking.id, actor_id, reason=reason, **extra)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_selectable(self, job: Job, now: datetime) -> None:
        if job.status in (JobStatus.ASSIGNED.value, JobStatus.IN_PROGRESS.value):
            raise NoLongerAvailableError("This job is no longer available")
        if not job.is_open:
            raise JobNotOpenError(f"Cannot select a worker for job in status: {job.status}")
        if job.is_expired_at(now):
            raise JobNotOpenError("Job posting has expired")

    def _restore_selection(self, application_id: str, accepted_at: datetime) -> None:
        """Put an acceptance whose booking could not follow back to selected."""

        def restore(current: JobApplication) -> Optional[JobApplication]:
            if current.status != ApplicationStatus.ACCEPTED.value or current.accepted_at != accepted_at:
                return None
            return replace(current, status=ApplicationStatus.SELECTED.value, accepted_at=None)

        self._update_application(application_id, restore)

    def _expire_selection(self, application_id: str, now: datetime) -> bool:
        """Unpick one lapsed selection. Returns False if someone acted first."""
        window = self.acceptance_window

        def lapse(current: JobApplication) -> Optional[JobApplication]:
            if current.status != ApplicationStatus.SELECTED.value:
                return None
            if current.selected_at is None or current.selected_at + window > now:
                return None
            return replace(current, status=ApplicationStatus.UNPICKED.value, unpicked_at=now)

        application, changed = self._update_application(application_id, lapse)
        if not changed:
            return False

        actor = "system:selection_expiry"
        self._record_application(application, ApplicationStatus.SELECTED.value, actor)
        result = self.escrow.refund_escrow(application.booking_id, "selection_expired", actor_id=actor)
        self._reopen_job(application.job_id, application.booking_id, actor, reason="selection_expired")
        logger.info(
            f"Selection expired | app={application_id} | booking={application.booking_id}"
        )

        self.notifications.send(
            application.worker_id, NotificationKind.SELECTION_EXPIRED, job_id=application.job_id
        )
        self.notifications.send(
            result.booking.client_id,
            NotificationKind.SELECTION_EXPIRED,
            job_id=application.job_id,
            worker_id=application.worker_id,
        )
        return True

    def _reopen_job(
        self, job_id: str, booking_id: str, actor_id: str, reason: str, **extra
    ) -> Optional[Job]:
        """Return an assigned job to open, if it is still tied to this booking."""
        previous = {}

        def reopen(current: Job) -> Optional[Job]:
            if current.booking_id != booking_id:
                return None
            if current.status not in (JobStatus.ASSIGNED.value, JobStatus.IN_PROGRESS.value):
                return None
            previous["status"] = current.status
            return replace(
                current,
                status=JobStatus.OPEN.value,
                assigned_worker_id=None,
                booking_id=None,
                assigned_at=None,
                **extra,
            )

        job, changed = self._update_job(job_id, reopen)
        if changed:
            self._record_job(job, previous["status"], actor_id, reason=reason, booking_id=booking_id)
            logger.info(f"Job reopened | job={job_id} | reason={reason}")
        return job

    def application_for_booking(self, job_id: str, booking_id: str) -> Optional[JobApplication]:
        for application in self.storage.list_applications(job_id=job_id, limit=1000):
            if application.booking_id == booking_id:
                return application
        return None

    def _update_job(self, job_id: str, mutate):
        return update_with_retry(
            load=lambda: self.storage.get_job(job_id),
            mutate=mutate,
            save=self.storage.update_job,
            what=f"job {job_id}",
        )

    def _update_application(self, application_id: str, mutate):
        return update_with_retry(
            load=lambda: self.storage.get_application(application_id),
            mutate=mutate,
            save=self.storage.update_application,
            what=f"application {application_id}",
        )

    def _record_job(self, job: Job, from_status: Optional[str], actor_id: str, **metadata) -> None:
        if self.transitions is not None:
            self.transitions.save_transition(
                StateTransition.record("job", job.id, from_status, job.status, actor_id, **metadata)
            )

    def _record_application(
        self, application: JobApplication, from_status: Optional[str], actor_id: str, **metadata
    ) -> None:
        if self.transitions is not None:
            self.transitions.save_transition(
                StateTransition.record(
                    "application", application.id, from_status, application.status, actor_id, **metadata
                )
            )

    def _record_booking(self, booking: Booking, from_status: Optional[str], actor_id: str, **metadata) -> None:
        if self.transitions is not None:
            self.transitions.save_transition(
                StateTransition.record("booking", booking.id, from_status, booking.status, actor_id, **metadata)
            )
