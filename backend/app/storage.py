"""Supabase-backed storage for the marketplace core.

Each class satisfies the matching storage Protocol in ``errandwork``.
Conditional writes filter on ``version`` (compare-and-set); an update that
matches no row is turned back into VersionConflictError or
RecordNotFoundError so the services can retry or report it.
"""

from datetime import datetime
from typing import List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from errandwork.audit import StateTransition
from errandwork.auto_release.models import AutoReleaseLog, AutoReleaseRule
from errandwork.bookings.models import (
    SETTLED_PAYMENT_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
)
from errandwork.jobs.models import ApplicationStatus, Job, JobApplication, JobStatus
from errandwork.types import (
    DuplicateTransactionError,
    RecordNotFoundError,
    UniqueConstraintError,
    VersionConflictError,
    format_datetime,
    utc_now,
)
from errandwork.wallet.models import Wallet, WalletTransaction

from .database import (
    APPLICATIONS_TABLE,
    AUTO_RELEASE_LOGS_TABLE,
    AUTO_RELEASE_RULES_TABLE,
    BOOKINGS_TABLE,
    JOBS_TABLE,
    TRANSITIONS_TABLE,
    WALLET_TRANSACTIONS_TABLE,
    WALLETS_TABLE,
    WORKER_PROFILES_TABLE,
    is_unique_violation,
)
from .logging_config import get_logger

logger = get_logger("storage")


def _value(v) -> Optional[str]:
    if v is None:
        return None
    return v.value if hasattr(v, "value") else v


def _first(result) -> Optional[dict]:
    return result.data[0] if result.data else None


class _SupabaseTable:
    """Shared insert/CAS plumbing for one table."""

    key: str = "id"

    def __init__(self, db: Client):
        self.db = db

    def _fetch(self, table: str, key: str, value: str) -> Optional[dict]:
        return _first(self.db.table(table).select("*").eq(key, value).limit(1).execute())

    def _insert(self, table: str, row: dict, constraint: str) -> dict:
        try:
            result = self.db.table(table).insert(row).execute()
        except APIError as e:
            if is_unique_violation(e):
                raise UniqueConstraintError(table, constraint, str(row.get(self.key))) from e
            raise
        return _first(result) or row

    def _compare_and_set(self, table: str, key: str, row: dict, expected_version: int) -> dict:
        row = dict(row)
        record_id = row[key]
        row["version"] = expected_version + 1
        row["updated_at"] = format_datetime(utc_now())
        row.pop("created_at", None)
        result = (
            self.db.table(table)
            .update(row)
            .eq(key, record_id)
            .eq("version", expected_version)  # Optimistic lock
            .execute()
        )
        stored = _first(result)
        if stored is not None:
            return stored
        current = self._fetch(table, key, record_id)
        if current is None:
            raise RecordNotFoundError(table, record_id)
        logger.info(f"CAS miss | table={table} | id={record_id} | expected={expected_version}")
        raise VersionConflictError(table, record_id, expected_version, current.get("version"))


# =============================================================================
# Jobs
# =============================================================================


class SupabaseJobStorage(_SupabaseTable):
    """JobStorage over the jobs and job_applications tables."""

    def save_job(self, job: Job) -> str:
        self._insert(JOBS_TABLE, job.to_dict(), "jobs_pkey")
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        row = self._fetch(JOBS_TABLE, "id", job_id)
        return Job.from_dict(row) if row else None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        client_id: Optional[str] = None,
        assigned_worker_id: Optional[str] = None,
        category: Optional[str] = None,
        expires_before: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        query = self.db.table(JOBS_TABLE).select("*")
        if status is not None:
            query = query.eq("status", _value(status))
        if client_id is not None:
            query = query.eq("client_id", client_id)
        if assigned_worker_id is not None:
            query = query.eq("assigned_worker_id", assigned_worker_id)
        if category is not None:
            query = query.eq("category", category)
        if expires_before is not None:
            query = query.lt("expires_at", format_datetime(expires_before))
        result = (
            query.order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return [Job.from_dict(row) for row in result.data or []]

    def update_job(self, job: Job, expected_version: int) -> Job:
        return Job.from_dict(self._compare_and_set(JOBS_TABLE, "id", job.to_dict(), expected_version))

    def save_application(self, application: JobApplication) -> str:
        # one_active_application_per_worker is a partial unique index
        self._insert(APPLICATIONS_TABLE, application.to_dict(), "one_active_application_per_worker")
        return application.id

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        row = self._fetch(APPLICATIONS_TABLE, "id", application_id)
        return JobApplication.from_dict(row) if row else None

    def list_applications(
        self,
        job_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        selected_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[JobApplication]:
        query = self.db.table(APPLICATIONS_TABLE).select("*")
        if job_id is not None:
            query = query.eq("job_id", job_id)
        if worker_id is not None:
            query = query.eq("worker_id", worker_id)
        if status is not None:
            query = query.eq("status", _value(status))
        if selected_before is not None:
            query = query.lt("selected_at", format_datetime(selected_before))
        result = query.order("applied_at").limit(limit).execute()
        return [JobApplication.from_dict(row) for row in result.data or []]

    def update_application(self, application: JobApplication, expected_version: int) -> JobApplication:
        row = self._compare_and_set(APPLICATIONS_TABLE, "id", application.to_dict(), expected_version)
        return JobApplication.from_dict(row)


# =============================================================================
# Bookings
# =============================================================================


class SupabaseBookingStorage(_SupabaseTable):
    """BookingStorage over the bookings table."""

    def save_booking(self, booking: Booking) -> str:
        self._insert(BOOKINGS_TABLE, booking.to_dict(), "bookings_pkey")
        return booking.id

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        row = self._fetch(BOOKINGS_TABLE, "id", booking_id)
        return Booking.from_dict(row) if row else None

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
        query = self.db.table(BOOKINGS_TABLE).select("*")
        filters = {
            "status": _value(status),
            "payment_status": _value(payment_status),
            "client_id": client_id,
            "worker_id": worker_id,
            "job_id": job_id,
        }
        for column, wanted in filters.items():
            if wanted is not None:
                query = query.eq(column, wanted)
        if unsettled:
            query = query.in_("payment_status", sorted(SETTLED_PAYMENT_STATUSES))
            query = query.is_("settled_at", "null")
        result = query.order("created_at").order("id").limit(limit).execute()
        return [Booking.from_dict(row) for row in result.data or []]

    def update_booking(self, booking: Booking, expected_version: int) -> Booking:
        row = self._compare_and_set(BOOKINGS_TABLE, "id", booking.to_dict(), expected_version)
        return Booking.from_dict(row)


# =============================================================================
# Wallets
# =============================================================================


class SupabaseWalletStorage(_SupabaseTable):
    """WalletStorage over wallets and the append-only wallet_transactions."""

    key = "user_id"

    def get_wallet(self, user_id: str) -> Optional[Wallet]:
        row = self._fetch(WALLETS_TABLE, "user_id", user_id)
        return Wallet.from_dict(row) if row else None

    def create_wallet(self, wallet: Wallet) -> Wallet:
        row = wallet.to_dict()
        row["created_at"] = row["created_at"] or format_datetime(utc_now())
        try:
            return Wallet.from_dict(self._insert(WALLETS_TABLE, row, "wallets_pkey"))
        except UniqueConstraintError:
            # Lost the race to create; the other writer's row wins
            existing = self.get_wallet(wallet.user_id)
            if existing is None:
                raise
            return existing

    def update_wallet(self, wallet: Wallet, expected_version: int) -> Wallet:
        row = self._compare_and_set(WALLETS_TABLE, "user_id", wallet.to_dict(), expected_version)
        return Wallet.from_dict(row)

    def list_wallets(self) -> List[Wallet]:
        result = self.db.table(WALLETS_TABLE).select("*").execute()
        return [Wallet.from_dict(row) for row in result.data or []]

    def append_transaction(self, tx: WalletTransaction) -> WalletTransaction:
        try:
            self.db.table(WALLET_TRANSACTIONS_TABLE).insert(tx.to_dict()).execute()
        except APIError as e:
            if is_unique_violation(e):
                raise DuplicateTransactionError(tx.id) from e
            raise
        return tx

    def get_transaction(self, transaction_id: str) -> Optional[WalletTransaction]:
        row = self._fetch(WALLET_TRANSACTIONS_TABLE, "id", transaction_id)
        return WalletTransaction.from_dict(row) if row else None

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        limit: int = 1000,
    ) -> List[WalletTransaction]:
        query = self.db.table(WALLET_TRANSACTIONS_TABLE).select("*")
        if user_id is not None:
            query = query.eq("user_id", user_id)
        if booking_id is not None:
            query = query.eq("booking_id", booking_id)
        # seq is a bigserial, so it is ledger order
        result = query.order("seq").limit(limit).execute()
        return [WalletTransaction.from_dict(row) for row in result.data or []]


# =============================================================================
# Auto-release
# =============================================================================


class SupabaseAutoReleaseStorage(_SupabaseTable):
    """AutoReleaseStorage over auto_release_rules and auto_release_logs."""

    def save_rule(self, rule: AutoReleaseRule) -> str:
        row = rule.to_dict()
        row["created_at"] = row["created_at"] or format_datetime(utc_now())
        row["updated_at"] = format_datetime(utc_now())
        self.db.table(AUTO_RELEASE_RULES_TABLE).upsert(row).execute()
        return rule.id

    def get_rule(self, rule_id: str) -> Optional[AutoReleaseRule]:
        row = self._fetch(AUTO_RELEASE_RULES_TABLE, "id", rule_id)
        return AutoReleaseRule.from_dict(row) if row else None

    def list_rules(self, enabled: Optional[bool] = None) -> List[AutoReleaseRule]:
        query = self.db.table(AUTO_RELEASE_RULES_TABLE).select("*")
        if enabled is not None:
            query = query.eq("enabled", enabled)
        result = query.order("priority").order("id").execute()
        return [AutoReleaseRule.from_dict(row) for row in result.data or []]

    def save_log(self, log: AutoReleaseLog) -> str:
        self.db.table(AUTO_RELEASE_LOGS_TABLE).insert(log.to_dict()).execute()
        return log.id

    def list_logs(
        self,
        booking_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 50,
    ) -> List[AutoReleaseLog]:
        query = self.db.table(AUTO_RELEASE_LOGS_TABLE).select("*")
        if booking_id is not None:
            query = query.eq("booking_id", booking_id)
        if action is not None:
            query = query.eq("action", _value(action))
        result = query.order("seq", desc=True).limit(limit).execute()
        return [AutoReleaseLog.from_dict(row) for row in result.data or []]


# =============================================================================
# Audit
# =============================================================================


class SupabaseTransitionLog(_SupabaseTable):
    """TransitionLog over the state_transitions table."""

    def save_transition(self, transition: StateTransition) -> str:
        self.db.table(TRANSITIONS_TABLE).insert(transition.to_dict()).execute()
        return transition.id

    def get_transitions(self, entity_type: str, entity_id: str) -> List[StateTransition]:
        result = (
            self.db.table(TRANSITIONS_TABLE)
            .select("*")
            .eq("entity_type", entity_type)
            .eq("entity_id", entity_id)
            .order("created_at")
            .execute()
        )
        return [StateTransition.from_dict(row) for row in result.data or []]


# =============================================================================
# Worker eligibility
# =============================================================================


class SupabaseWorkerEligibility:
    """WorkerEligibility from the worker_profiles table.

    A worker with no profile row, or a failed lookup, is not eligible.
    """

    def __init__(self, db: Client):
        self.db = db

    def is_verified_and_active(self, worker_id: str) -> bool:
        try:
            row = _first(
                self.db.table(WORKER_PROFILES_TABLE)
                .select("is_verified, is_active")
                .eq("user_id", worker_id)
                .limit(1)
                .execute()
            )
        except APIError as e:
            logger.error(f"Eligibility lookup failed | worker={worker_id} | error={e}")
            return False
        return bool(row and row.get("is_verified") and row.get("is_active"))
