"""Worker eligibility capability (verification and account status live elsewhere)."""

from typing import Iterable, Optional, Protocol


class WorkerEligibility(Protocol):
    def is_verified_and_active(self, worker_id: str) -> bool:
        ...


class AllowAllEligibility:
    """Treats every worker as eligible."""

    def is_verified_and_active(self, worker_id: str) -> bool:
        return True


class StaticWorkerEligibility:
    """Eligibility from a fixed set of worker ids, with an optional block list."""

    def __init__(self, verified: Iterable[str], suspended: Optional[Iterable[str]] = None):
        self.verified = set(verified)
        self.suspended = set(suspended or ())

    def is_verified_and_active(self, worker_id: str) -> bool:
        return worker_id in self.verified and worker_id not in self.suspended
