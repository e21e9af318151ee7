"""
Marketplace facade.

Wires the services together and exposes the operations callers use, each
returning a ``Result`` envelope instead of raising: ``{"success": true,
"data": ...}`` or ``{"success": false, "reason": "...", "message": "..."}``.
The ``reason`` strings are the stable ``ErrorCode`` values.
"""

import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from errandwork.audit import InMemoryTransitionLog, TransitionLog
from errandwork.auto_release.service import AutoReleaseService
from errandwork.auto_release.storage import AutoReleaseStorage, InMemoryAutoReleaseStorage
from errandwork.bookings.cancellation import WorkerCancellationPolicy
from errandwork.bookings.models import PaymentStatus
from errandwork.bookings.service import BookingService
from errandwork.bookings.storage import BookingStorage, InMemoryBookingStorage
from errandwork.config import MarketplaceConfig
from errandwork.eligibility import AllowAllEligibility, WorkerEligibility
from errandwork.errors import ErrorCode, MarketplaceError, ProviderError
from errandwork.escrow.service import EscrowService
from errandwork.jobs.service import JobService
from errandwork.jobs.storage import InMemoryJobStorage, JobStorage
from errandwork.notifications import NotificationDispatcher, Notifier
from errandwork.payments.provider import PaymentProvider
from errandwork.wallet.service import LedgerCheck, WalletService
from errandwork.wallet.storage import InMemoryWalletStorage, WalletStorage

logger = logging.getLogger(__name__)

# Upper bound on bookings read for a ledger check
LEDGER_SCAN_LIMIT = 100_000


def to_data(value: Any) -> Any:
    """Turn service return values into JSON-friendly data."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value):
        return {f.name: to_data(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [to_data(v) for v in value]
    if isinstance(value, dict):
        return {k: to_data(v) for k, v in value.items()}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class Result:
    """Outcome envelope for a marketplace operation."""

    success: bool
    message: Optional[str] = None
    data: Any = None
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "Result":
        return cls(success=True, data=to_data(data), message=message)

    @classmethod
    def fail(cls, error: MarketplaceError) -> "Result":
        return cls(
            success=False,
            message=error.message,
            reason=error.code.value,
            details=to_data(error.details),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.success:
            out["data"] = self.data
            if self.message:
                out["message"] = self.message
        else:
            out["message"] = self.message
            out["reason"] = self.reason
            if self.details:
                out["details"] = self.details
        return out


class Marketplace:
    """Job marketplace with escrow, assembled from its services.

    Every collaborator is optional; omitted storages are in-memory, so
    ``Marketplace()`` is a working local instance.
    """

    def __init__(
        self,
        jobs_storage: Optional[JobStorage] = None,
        bookings_storage: Optional[BookingStorage] = None,
        wallets_storage: Optional[WalletStorage] = None,
        auto_release_storage: Optional[AutoReleaseStorage] = None,
        transitions: Optional[TransitionLog] = None,
        eligibility: Optional[WorkerEligibility] = None,
        notifier: Optional[Notifier] = None,
        payment_provider: Optional[PaymentProvider] = None,
        config: Optional[MarketplaceConfig] = None,
    ):
        self.config = config or MarketplaceConfig()
        self.payment_provider = payment_provider
        self.notifications = NotificationDispatcher(notifier)
        self.transitions = transitions if transitions is not None else InMemoryTransitionLog()
        eligibility = eligibility or AllowAllEligibility()

        jobs_storage = jobs_storage if jobs_storage is not None else InMemoryJobStorage()
        bookings_storage = bookings_storage if bookings_storage is not None else InMemoryBookingStorage()
        wallets_storage = wallets_storage if wallets_storage is not None else InMemoryWalletStorage()
        auto_release_storage = (
            auto_release_storage if auto_release_storage is not None else InMemoryAutoReleaseStorage()
        )

        self.wallets = WalletService(wallets_storage, config=self.config)
        self.escrow = EscrowService(
            bookings_storage,
            self.wallets,
            jobs=jobs_storage,
            transitions=self.transitions,
            notifications=self.notifications,
        )
        self.jobs = JobService(
            jobs_storage,
            bookings_storage,
            self.escrow,
            self.wallets,
            eligibility=eligibility,
            notifications=self.notifications,
            transitions=self.transitions,
            config=self.config,
        )
        self.bookings = BookingService(
            bookings_storage,
            self.escrow,
            jobs=self.jobs,
            eligibility=eligibility,
            notifications=self.notifications,
            transitions=self.transitions,
        )
        self.cancellation = WorkerCancellationPolicy(
            self.bookings, config=self.config, notifications=self.notifications
        )
        self.auto_release = AutoReleaseService(
            auto_release_storage, bookings_storage, self.escrow, config=self.config
        )

    def _call(self, operation: Callable[..., Any], *args, message: Optional[str] = None, **kwargs) -> Result:
        try:
            return Result.ok(operation(*args, **kwargs), message=message)
        except MarketplaceError as e:
            logger.info(f"{operation.__name__} refused | reason={e.code.value} | {e.message}")
            return Result.fail(e)
        except ValueError as e:
            logger.info(f"{operation.__name__} rejected input | {e}")
            return Result(success=False, message=str(e), reason=ErrorCode.INVALID_INPUT.value)

    # === Jobs ===

    def create_job(self, client_id: str, title: str, budget_max, **kwargs) -> Result:
        return self._call(self.jobs.create_job, client_id, title, budget_max, **kwargs)

    def apply_to_job(self, job_id: str, worker_id: str, message: str = "") -> Result:
        return self._call(self.jobs.apply, job_id, worker_id, message, message="Application submitted")

    def withdraw_application(self, application_id: str, worker_id: str) -> Result:
        return self._call(self.jobs.withdraw, application_id, worker_id, message="Application withdrawn")

    def select_worker(self, job_id: str, application_id: str, client_id: str) -> Result:
        return self._call(
            self.jobs.select_worker, job_id, application_id, client_id, message="Worker selected"
        )

    def accept_selection(self, application_id: str, worker_id: str) -> Result:
        return self._call(self.jobs.accept_selection, application_id, worker_id, message="Job accepted")

    def decline_selection(self, application_id: str, worker_id: str, reason: Optional[str] = None) -> Result:
        return self._call(
            self.jobs.decline_selection, application_id, worker_id, reason, message="Job declined"
        )

    def unpick_worker(self, job_id: str, client_id: str) -> Result:
        return self._call(self.jobs.unpick_worker, job_id, client_id, message="Worker unpicked")

    def get_job(self, job_id: str) -> Result:
        return self._call(self.jobs.get_job, job_id)

    def list_jobs(self, **filters) -> Result:
        return self._call(self.jobs.list_jobs, **filters)

    def list_applications(self, job_id: str, client_id: str) -> Result:
        return self._call(self.jobs.list_applications, job_id, client_id)

    def cancel_job(self, job_id: str, client_id: str) -> Result:
        return self._call(self.jobs.cancel_job, job_id, client_id, message="Job cancelled")

    def expire_selections(self) -> Result:
        return self._call(self.jobs.expire_selections)

    def expire_jobs(self) -> Result:
        return self._call(self.jobs.expire_jobs)

    # === Bookings ===

    def get_booking(self, booking_id: str, user_id: str) -> Result:
        return self._call(self.bookings.get_booking, booking_id, user_id)

    def list_bookings(self, user_id: str, role: Optional[str] = None, status: Optional[str] = None) -> Result:
        return self._call(self.bookings.list_for_user, user_id, role=role, status=status)

    def start_work(self, booking_id: str, worker_id: str) -> Result:
        return self._call(self.bookings.start_work, booking_id, worker_id)

    def mark_worker_completed(self, booking_id: str, worker_id: str) -> Result:
        return self._call(self.bookings.mark_worker_completed, booking_id, worker_id)

    def confirm_work_completion(self, booking_id: str, client_id: str) -> Result:
        return self._call(
            self.bookings.confirm_work_completion, booking_id, client_id, message="Payment released"
        )

    def request_cancellation(self, booking_id: str, user_id: str, reason: str) -> Result:
        return self._call(self.bookings.request_cancellation, booking_id, user_id, reason)

    def approve_cancellation(self, booking_id: str, user_id: str) -> Result:
        return self._call(self.bookings.approve_cancellation, booking_id, user_id, message="Booking cancelled")

    def request_full_refund(self, booking_id: str, client_id: str, reason: Optional[str] = None) -> Result:
        return self._call(
            self.bookings.request_full_refund, booking_id, client_id, reason, message="Payment refunded"
        )

    def raise_dispute(self, booking_id: str, user_id: str, reason: str) -> Result:
        return self._call(self.bookings.raise_dispute, booking_id, user_id, reason)

    def resolve_dispute(self, booking_id: str, resolution: str, actor_id: str, note: Optional[str] = None) -> Result:
        return self._call(self.bookings.resolve_dispute, booking_id, resolution, actor_id, note)

    # === Worker cancellation ===

    def can_cancel(self, booking_id: str, worker_id: str) -> Result:
        return self._call(self.cancellation.can_cancel, booking_id, worker_id)

    def cancel_as_worker(self, booking_id: str, worker_id: str, reason: Optional[str] = None) -> Result:
        return self._call(
            self.cancellation.cancel_as_worker, booking_id, worker_id, reason, message="Booking cancelled"
        )

    # === Money ===

    def top_up(self, user_id: str, reference: str) -> Result:
        """Credit a wallet from a verified provider payment."""
        if self.payment_provider is None:
            return Result.fail(ProviderError("No payment provider configured"))
        return self._call(self.wallets.top_up_from_provider, user_id, reference, self.payment_provider)

    def get_wallet(self, user_id: str) -> Result:
        return self._call(self.wallets.get_wallet, user_id)

    def list_transactions(self, user_id: str, limit: int = 100) -> Result:
        return self._call(self.wallets.list_transactions, user_id, limit=limit)

    def initialize_top_up(self, user_id: str, email: str, amount, callback_url: str) -> Result:
        """Start a provider checkout; the reference is later passed to ``top_up``."""
        if self.payment_provider is None:
            return Result.fail(ProviderError("No payment provider configured"))
        reference = f"topup_{uuid.uuid4().hex}"
        return self._call(
            self.payment_provider.initialize_charge,
            email,
            amount,
            reference,
            callback_url,
            metadata={"user_id": user_id},
        )

    # === Auto-release ===

    def run_auto_release_sweep(self, triggered_by: str = "cron", dry_run: bool = False) -> Result:
        return self._call(self.auto_release.run_sweep, triggered_by=triggered_by, dry_run=dry_run)

    def release_booking(self, booking_id: str, actor_id: str, rule_id: Optional[str] = None) -> Result:
        """Admin release of one booking, logged like a rule match."""
        return self._call(
            self.auto_release.trigger_manual_release,
            booking_id,
            rule_id=rule_id,
            actor_id=actor_id,
            message="Payment released",
        )

    def list_rules(self) -> Result:
        return self._call(self.auto_release.list_rules)

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> Result:
        return self._call(self.auto_release.set_rule_enabled, rule_id, enabled)

    def list_release_logs(self, booking_id: Optional[str] = None, limit: int = 50) -> Result:
        return self._call(self.auto_release.list_logs, booking_id=booking_id, limit=limit)

    def ledger_check(self) -> LedgerCheck:
        """Compare total wallet escrow with the budgets of held bookings."""
        held = self.bookings.storage.list_bookings(
            payment_status=PaymentStatus.HELD, limit=LEDGER_SCAN_LIMIT
        )
        return self.wallets.check_ledger_invariant(b.budget_amount for b in held)
