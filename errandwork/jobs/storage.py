"""
Jobs storage layer.

Provides persistence for jobs and job applications. Updates are
compare-and-set on ``version``: the caller passes the version it read and
the write fails with VersionConflictError if anyone else wrote in between.
"""

import copy
import logging
import threading
from datetime import datetime
from typing import List, Optional, Protocol

from errandwork.jobs.models import (
    ACTIVE_APPLICATION_STATUSES,
    ApplicationStatus,
    Job,
    JobApplication,
    JobStatus,
)
from errandwork.types import (
    RecordNotFoundError,
    UniqueConstraintError,
    VersionConflictError,
    utc_now,
)

logger = logging.getLogger(__name__)


class JobStorage(Protocol):
    """Protocol for job persistence backends."""

    # Jobs
    def save_job(self, job: Job) -> str:
        """Insert a job listing. Returns the job ID."""
        ...

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        ...

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
        """List jobs with optional filters, newest first."""
        ...

    def update_job(self, job: Job, expected_version: int) -> Job:
        """Write a job if the stored version matches. Returns the stored job."""
        ...

    # Applications
    def save_application(self, application: JobApplication) -> str:
        """Insert an application.

        Raises UniqueConstraintError if the worker already has an active
        (non-withdrawn) application for the job.
        """
        ...

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        """Get an application by ID."""
        ...

    def list_applications(
        self,
        job_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        selected_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[JobApplication]:
        """List applications with optional filters, oldest first."""
        ...

    def update_application(self, application: JobApplication, expected_version: int) -> JobApplication:
        """Write an application if the stored version matches."""
        ...


def _status_value(status) -> Optional[str]:
    if status is None:
        return None
    return status.value if hasattr(status, "value") else status


class InMemoryJobStorage:
    """In-memory job storage for testing and local development."""

    def __init__(self):
        """Initialize empty storage."""
        self._jobs: dict[str, Job] = {}
        self._applications: dict[str, JobApplication] = {}
        self._lock = threading.Lock()

    # === Jobs ===

    def save_job(self, job: Job) -> str:
        with self._lock:
            if job.id in self._jobs:
                raise UniqueConstraintError("jobs", "jobs_pkey", job.id)
            self._jobs[job.id] = copy.deepcopy(job)
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

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
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values()]

        # Apply filters
        status_val = _status_value(status)
        if status_val is not None:
            jobs = [j for j in jobs if j.status == status_val]
        if client_id is not None:
            jobs = [j for j in jobs if j.client_id == client_id]
        if assigned_worker_id is not None:
            jobs = [j for j in jobs if j.assigned_worker_id == assigned_worker_id]
        if category is not None:
            jobs = [j for j in jobs if j.category == category]
        if expires_before is not None:
            jobs = [j for j in jobs if j.expires_at is not None and j.expires_at < expires_before]

        # Sort by created_at desc
        jobs.sort(key=lambda j: j.created_at or utc_now(), reverse=True)

        return jobs[offset : offset + limit]

    def update_job(self, job: Job, expected_version: int) -> Job:
        with self._lock:
            current = self._jobs.get(job.id)
            if current is None:
                raise RecordNotFoundError("jobs", job.id)
            if current.version != expected_version:
                raise VersionConflictError("jobs", job.id, expected_version, current.version)
            stored = copy.deepcopy(job)
            stored.version = expected_version + 1
            stored.updated_at = utc_now()
            self._jobs[job.id] = stored
            return copy.deepcopy(stored)

    # === Applications ===

    def save_application(self, application: JobApplication) -> str:
        with self._lock:
            if application.id in self._applications:
                raise UniqueConstraintError("job_applications", "job_applications_pkey", application.id)
            if application.status in ACTIVE_APPLICATION_STATUSES:
                for existing in self._applications.values():
                    if (
                        existing.job_id == application.job_id
                        and existing.worker_id == application.worker_id
                        and existing.status in ACTIVE_APPLICATION_STATUSES
                    ):
                        raise UniqueConstraintError(
                            "job_applications",
                            "one_active_application_per_worker",
                            f"job={application.job_id} worker={application.worker_id}",
                        )
            self._applications[application.id] = copy.deepcopy(application)
        return application.id

    def get_application(self, application_id: str) -> Optional[JobApplication]:
        with self._lock:
            app = self._applications.get(application_id)
            return copy.deepcopy(app) if app else None

    def list_applications(
        self,
        job_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
        selected_before: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[JobApplication]:
        with self._lock:
            apps = [copy.deepcopy(a) for a in self._applications.values()]

        if job_id is not None:
            apps = [a for a in apps if a.job_id == job_id]
        if worker_id is not None:
            apps = [a for a in apps if a.worker_id == worker_id]
        status_val = _status_value(status)
        if status_val is not None:
            apps = [a for a in apps if a.status == status_val]
        if selected_before is not None:
            apps = [a for a in apps if a.selected_at is not None and a.selected_at < selected_before]

        apps.sort(key=lambda a: a.applied_at or utc_now())
        return apps[:limit]

    def update_application(self, application: JobApplication, expected_version: int) -> JobApplication:
        with self._lock:
            current = self._applications.get(application.id)
            if current is None:
                raise RecordNotFoundError("job_applications", application.id)
            if current.version != expected_version:
                raise VersionConflictError(
                    "job_applications", application.id, expected_version, current.version
                )
            stored = copy.deepcopy(application)
            stored.version = expected_version + 1
            self._applications[application.id] = stored
            return copy.deepcopy(stored)
