"""
Job and application data models.

A Job is a client's posting; JobApplication is a worker's bid for it. The
job's ``status`` is the concurrency gate for selection: only one request can
move it from ``open`` to ``assigned``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from errandwork.types import format_datetime, parse_datetime, to_amount, utc_now


class JobStatus(str, Enum):
    """Job lifecycle status."""

    OPEN = "open"  # Accepting applications
    ASSIGNED = "assigned"  # A worker is selected and funds are held
    IN_PROGRESS = "in_progress"  # Worker started the work
    COMPLETED = "completed"  # Escrow released
    CANCELLED = "cancelled"  # Client cancelled
    EXPIRED = "expired"  # Nobody was hired before expires_at


class ApplicationStatus(str, Enum):
    """Application lifecycle status."""

    PENDING = "pending"
    SELECTED = "selected"  # Client picked this worker; acceptance window running
    ACCEPTED = "accepted"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"
    UNPICKED = "unpicked"  # Client undid the pick, or the window lapsed


# Valid state transitions
VALID_JOB_TRANSITIONS = {
    JobStatus.OPEN: {JobStatus.ASSIGNED, JobStatus.CANCELLED, JobStatus.EXPIRED},
    JobStatus.ASSIGNED: {JobStatus.OPEN, JobStatus.IN_PROGRESS, JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.OPEN, JobStatus.COMPLETED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
    JobStatus.EXPIRED: set(),
}

VALID_APPLICATION_TRANSITIONS = {
    ApplicationStatus.PENDING: {ApplicationStatus.SELECTED, ApplicationStatus.WITHDRAWN},
    ApplicationStatus.SELECTED: {
        ApplicationStatus.ACCEPTED,
        ApplicationStatus.DECLINED,
        ApplicationStatus.UNPICKED,
    },
    # An accepted worker who later cancels is marked declined
    ApplicationStatus.ACCEPTED: {ApplicationStatus.DECLINED},
    ApplicationStatus.DECLINED: set(),
    ApplicationStatus.WITHDRAWN: set(),
    ApplicationStatus.UNPICKED: set(),
}

# Statuses that still count against the one-application-per-worker rule
ACTIVE_APPLICATION_STATUSES = frozenset(
    s.value for s in ApplicationStatus if s != ApplicationStatus.WITHDRAWN
)

# Statuses that bind a worker to the job
BOUND_APPLICATION_STATUSES = frozenset(
    {ApplicationStatus.SELECTED.value, ApplicationStatus.ACCEPTED.value}
)

_TERMINAL_TIMESTAMPS = ("accepted_at", "declined_at", "withdrawn_at", "unpicked_at")


@dataclass
class Job:
    """A job posting.

    Attributes:
        id: Unique identifier
        client_id: Client who posted the job
        title: Short title
        category: Service category (cleaning, errands, ...)
        budget_min: Lower bound of the budget (equal to budget_max for fixed budgets)
        budget_max: Upper bound of the budget; this is the amount held in escrow
        status: Lifecycle status
        assigned_worker_id: Worker bound to the job, if any
        booking_id: Booking created at selection time
        expires_at: When an unfilled posting expires
        applicant_count: Number of applications received
    """

    id: str
    client_id: str
    title: str
    budget_max: Decimal
    category: str = "general"
    description: str = ""
    budget_min: Optional[Decimal] = None
    status: str = JobStatus.OPEN.value
    assigned_worker_id: Optional[str] = None
    booking_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    applicant_count: int = 0
    worker_cancelled_at: Optional[datetime] = None
    worker_cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    def __post_init__(self):
        if isinstance(self.status, JobStatus):
            self.status = self.status.value
        if self.status not in {s.value for s in JobStatus}:
            raise ValueError(f"Invalid status: {self.status}")
        if not self.title or not self.title.strip():
            raise ValueError("Title is required")
        if len(self.title) > 200:
            raise ValueError("Title too long (max 200 characters)")
        self.budget_max = to_amount(self.budget_max)
        if self.budget_max <= 0:
            raise ValueError("Budget must be positive")
        self.budget_min = to_amount(
            self.budget_min if self.budget_min is not None else self.budget_max
        )
        if self.budget_min <= 0:
            raise ValueError("Budget must be positive")
        if self.budget_min > self.budget_max:
            raise ValueError("Minimum budget cannot exceed maximum budget")
        if self.applicant_count < 0:
            raise ValueError("applicant_count cannot be negative")
        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def hold_amount(self) -> Decimal:
        """Amount escrowed when a worker is selected."""
        return self.budget_max

    @property
    def is_fixed_budget(self) -> bool:
        return self.budget_min == self.budget_max

    @property
    def is_open(self) -> bool:
        return self.status == JobStatus.OPEN.value

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            JobStatus.COMPLETED.value,
            JobStatus.CANCELLED.value,
            JobStatus.EXPIRED.value,
        )

    def is_expired_at(self, now: datetime) -> bool:
        """True if the posting's expiry has passed (regardless of status)."""
        return self.expires_at is not None and self.expires_at <= now

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """Check if transition to new status is valid."""
        current = JobStatus(self.status)
        return JobStatus(new_status) in VALID_JOB_TRANSITIONS.get(current, set())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "budget_min": str(self.budget_min),
            "budget_max": str(self.budget_max),
            "status": self.status,
            "assigned_worker_id": self.assigned_worker_id,
            "booking_id": self.booking_id,
            "assigned_at": format_datetime(self.assigned_at),
            "expires_at": format_datetime(self.expires_at),
            "applicant_count": self.applicant_count,
            "worker_cancelled_at": format_datetime(self.worker_cancelled_at),
            "worker_cancel_reason": self.worker_cancel_reason,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            client_id=data["client_id"],
            title=data["title"],
            category=data.get("category") or "general",
            description=data.get("description") or "",
            budget_min=data.get("budget_min"),
            budget_max=data["budget_max"],
            status=data.get("status", JobStatus.OPEN.value),
            assigned_worker_id=data.get("assigned_worker_id"),
            booking_id=data.get("booking_id"),
            assigned_at=parse_datetime(data.get("assigned_at")),
            expires_at=parse_datetime(data.get("expires_at")),
            applicant_count=data.get("applicant_count") or 0,
            worker_cancelled_at=parse_datetime(data.get("worker_cancelled_at")),
            worker_cancel_reason=data.get("worker_cancel_reason"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            version=data.get("version", 1),
        )


@dataclass
class JobApplication:
    """A worker's application to a job."""

    id: str
    job_id: str
    worker_id: str
    message: str = ""
    status: str = ApplicationStatus.PENDING.value
    booking_id: Optional[str] = None
    applied_at: Optional[datetime] = None
    selected_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    unpicked_at: Optional[datetime] = None
    version: int = 1

    def __post_init__(self):
        if isinstance(self.status, ApplicationStatus):
            self.status = self.status.value
        if self.status not in {s.value for s in ApplicationStatus}:
            raise ValueError(f"Invalid status: {self.status}")
        if len(self.message) > 2000:
            raise ValueError("Message too long (max 2000 characters)")
        stamped = [name for name in _TERMINAL_TIMESTAMPS if getattr(self, name) is not None]
        # accepted_at may coexist with declined_at when an accepted worker cancels later
        if len([n for n in stamped if n != "accepted_at"]) > 1:
            raise ValueError(f"Conflicting terminal timestamps: {', '.join(stamped)}")
        if self.applied_at is None:
            self.applied_at = utc_now()

    @property
    def is_active(self) -> bool:
        """Counts toward the one-application-per-worker rule."""
        return self.status in ACTIVE_APPLICATION_STATUSES

    @property
    def is_bound(self) -> bool:
        """Worker is selected or has accepted."""
        return self.status in BOUND_APPLICATION_STATUSES

    def can_transition_to(self, new_status: ApplicationStatus) -> bool:
        current = ApplicationStatus(self.status)
        return ApplicationStatus(new_status) in VALID_APPLICATION_TRANSITIONS.get(current, set())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "worker_id": self.worker_id,
            "message": self.message,
            "status": self.status,
            "booking_id": self.booking_id,
            "applied_at": format_datetime(self.applied_at),
            "selected_at": format_datetime(self.selected_at),
            "accepted_at": format_datetime(self.accepted_at),
            "declined_at": format_datetime(self.declined_at),
            "withdrawn_at": format_datetime(self.withdrawn_at),
            "unpicked_at": format_datetime(self.unpicked_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobApplication":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            worker_id=data["worker_id"],
            message=data.get("message") or "",
            status=data.get("status", ApplicationStatus.PENDING.value),
            booking_id=data.get("booking_id"),
            applied_at=parse_datetime(data.get("applied_at")),
            selected_at=parse_datetime(data.get("selected_at")),
            accepted_at=parse_datetime(data.get("accepted_at")),
            declined_at=parse_datetime(data.get("declined_at")),
            withdrawn_at=parse_datetime(data.get("withdrawn_at")),
            unpicked_at=parse_datetime(data.get("unpicked_at")),
            version=data.get("version", 1),
        )
