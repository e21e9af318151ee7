"""
Error taxonomy for marketplace operations.

Every error carries a stable machine-readable ``code`` so callers can branch
on the failure kind (insufficient funds vs. unauthorized vs. wrong state)
without parsing messages, plus a ``details`` dict for policy data that a UI
has to render (hours remaining, amount needed).
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable failure reason strings."""

    INVALID_STATE = "invalid_state"
    JOB_NOT_OPEN = "job_not_open"
    SELECTION_EXPIRED = "selection_expired"
    CANCELLATION_WINDOW = "cancellation_window"
    UNAUTHORIZED = "unauthorized"
    ALREADY_APPLIED = "already_applied"
    NO_LONGER_AVAILABLE = "no_longer_available"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_FOUND = "not_found"
    WORKER_INELIGIBLE = "worker_ineligible"
    PROVIDER_ERROR = "provider_error"
    INTERNAL = "internal"
    WALLET_INVARIANT = "wallet_invariant"
    INVALID_INPUT = "invalid_input"


class MarketplaceError(Exception):
    """Base exception for marketplace operations."""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.code.value, "message": self.message, **self.details}


class InvalidStateError(MarketplaceError):
    """Operation attempted from a state that doesn't permit it."""

    code = ErrorCode.INVALID_STATE


class JobNotOpenError(InvalidStateError):
    """Job is not accepting applications."""

    code = ErrorCode.JOB_NOT_OPEN


class SelectionExpiredError(InvalidStateError):
    """The acceptance window for a selection has passed."""

    code = ErrorCode.SELECTION_EXPIRED


class CancellationWindowError(InvalidStateError):
    """Worker tried to cancel before the waiting period elapsed."""

    code = ErrorCode.CANCELLATION_WINDOW


class UnauthorizedError(MarketplaceError):
    """Actor is not the client/worker of the record."""

    code = ErrorCode.UNAUTHORIZED


class AlreadyAppliedError(MarketplaceError):
    """Worker already has an active application for this job."""

    code = ErrorCode.ALREADY_APPLIED


class NoLongerAvailableError(MarketplaceError):
    """A concurrent request won the race for this job."""

    code = ErrorCode.NO_LONGER_AVAILABLE


class InsufficientFundsError(MarketplaceError):
    """Wallet hold would drive the balance negative."""

    code = ErrorCode.INSUFFICIENT_FUNDS

    def __init__(self, amount_needed, available, message: Optional[str] = None):
        self.amount_needed = amount_needed
        self.available = available
        super().__init__(
            message
            or f"Insufficient balance. Need ₦{amount_needed:,.2f}, available ₦{available:,.2f}",
            details={"amount_needed": str(amount_needed), "available": str(available)},
        )


class InvalidInputError(MarketplaceError):
    """Request data failed validation (bad amount, empty reason)."""

    code = ErrorCode.INVALID_INPUT


class NotFoundError(MarketplaceError):
    """Referenced record does not exist."""

    code = ErrorCode.NOT_FOUND


class WorkerIneligibleError(MarketplaceError):
    """Worker is not verified or not active."""

    code = ErrorCode.WORKER_INELIGIBLE


class ProviderError(MarketplaceError):
    """Payment provider call or verification failed."""

    code = ErrorCode.PROVIDER_ERROR


class InternalError(MarketplaceError):
    """Storage or consistency failure."""

    code = ErrorCode.INTERNAL


class WalletInvariantError(InternalError):
    """A counter update would break balance >= 0 or escrow >= 0."""

    code = ErrorCode.WALLET_INVARIANT
