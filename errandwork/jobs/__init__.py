"""Job board: postings and worker applications.

Models:
- Job: A client's posting
- JobApplication: A worker's application to a job
- JobStatus / ApplicationStatus: Lifecycle statuses

Storage:
- JobStorage: Persistence protocol
- InMemoryJobStorage: Dict-backed implementation

The selection workflow lives in ``errandwork.jobs.service.JobService``.
"""

from errandwork.jobs.models import (
    ACTIVE_APPLICATION_STATUSES,
    BOUND_APPLICATION_STATUSES,
    VALID_APPLICATION_TRANSITIONS,
    VALID_JOB_TRANSITIONS,
    ApplicationStatus,
    Job,
    JobApplication,
    JobStatus,
)
from errandwork.jobs.storage import InMemoryJobStorage, JobStorage

__all__ = [
    # Models
    "Job",
    "JobApplication",
    "JobStatus",
    "ApplicationStatus",
    "VALID_JOB_TRANSITIONS",
    "VALID_APPLICATION_TRANSITIONS",
    "ACTIVE_APPLICATION_STATUSES",
    "BOUND_APPLICATION_STATUSES",
    # Storage
    "JobStorage",
    "InMemoryJobStorage",
]
