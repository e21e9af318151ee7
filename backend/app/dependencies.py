"""Marketplace wiring and Result-to-HTTP translation for routes."""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, status

from errandwork import Marketplace, Result
from errandwork.errors import ErrorCode
from errandwork.payments import PaystackProvider

from .config import get_settings
from .database import get_supabase_client
from .logging_config import get_logger
from .storage import (
    SupabaseAutoReleaseStorage,
    SupabaseBookingStorage,
    SupabaseJobStorage,
    SupabaseTransitionLog,
    SupabaseWalletStorage,
    SupabaseWorkerEligibility,
)

logger = get_logger("dependencies")

_CONFLICT = status.HTTP_409_CONFLICT

STATUS_BY_REASON = {
    ErrorCode.NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED.value: status.HTTP_403_FORBIDDEN,
    ErrorCode.WORKER_INELIGIBLE.value: status.HTTP_403_FORBIDDEN,
    ErrorCode.INSUFFICIENT_FUNDS.value: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.ALREADY_APPLIED.value: _CONFLICT,
    ErrorCode.NO_LONGER_AVAILABLE.value: _CONFLICT,
    ErrorCode.INVALID_STATE.value: _CONFLICT,
    ErrorCode.JOB_NOT_OPEN.value: _CONFLICT,
    ErrorCode.SELECTION_EXPIRED.value: _CONFLICT,
    ErrorCode.CANCELLATION_WINDOW.value: _CONFLICT,
    ErrorCode.PROVIDER_ERROR.value: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.INVALID_INPUT.value: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INTERNAL.value: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.WALLET_INVARIANT.value: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_marketplace: Marketplace | None = None


def build_marketplace() -> Marketplace:
    """Assemble a Marketplace over Supabase storage."""
    settings = get_settings()
    db = get_supabase_client(settings)
    provider = None
    if settings.paystack_secret_key:
        provider = PaystackProvider(settings.paystack_secret_key, base_url=settings.paystack_base_url)
    market = Marketplace(
        jobs_storage=SupabaseJobStorage(db),
        bookings_storage=SupabaseBookingStorage(db),
        wallets_storage=SupabaseWalletStorage(db),
        auto_release_storage=SupabaseAutoReleaseStorage(db),
        transitions=SupabaseTransitionLog(db),
        eligibility=SupabaseWorkerEligibility(db),
        payment_provider=provider,
        config=settings.marketplace_config(),
    )
    created = market.auto_release.ensure_default_rules()
    if created:
        logger.info(f"Seeded auto-release rules | count={len(created)}")
    return market


def get_marketplace() -> Marketplace:
    """FastAPI dependency for the process-wide Marketplace."""
    global _marketplace
    if _marketplace is None:
        _marketplace = build_marketplace()
    return _marketplace


# Type alias for dependency injection
Market = Annotated[Marketplace, Depends(get_marketplace)]


def unwrap(result: Result) -> dict[str, Any]:
    """Return the success envelope, or raise the mapped HTTPException."""
    if result.success:
        return result.to_dict()
    status_code = STATUS_BY_REASON.get(result.reason, status.HTTP_400_BAD_REQUEST)
    detail = {"reason": result.reason, "message": result.message, **(result.details or {})}
    if status_code >= 500:
        logger.error(f"Marketplace failure | reason={result.reason} | {result.message}")
    raise HTTPException(status_code=status_code, detail=detail)
