"""Booking routes.

Work progress, completion, cancellation, refunds and disputes for a
funded booking. Money movement happens in the marketplace core; these
handlers only authenticate, log and translate outcomes.
"""

from typing import Literal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from ..auth import AdminUser, CurrentUser
from ..dependencies import Market, unwrap
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("bookings")
router = APIRouter(prefix="/bookings", tags=["bookings"])


# =============================================================================
# Request Models
# =============================================================================

BookingStatus = Literal[
    "pending",
    "confirmed",
    "accepted",
    "in_progress",
    "worker_completed",
    "completed",
    "cancellation_requested",
    "cancelled",
    "disputed",
]


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class OptionalReasonRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class ResolveDisputeRequest(BaseModel):
    """Admin decision on a disputed booking."""

    resolution: Literal["release", "refund"]
    note: str | None = Field(default=None, max_length=1000)


# =============================================================================
# Routes
# =============================================================================


@router.get("")
@limiter.limit("60/minute")
async def list_my_bookings(
    request: Request,
    auth: CurrentUser,
    market: Market,
    role: Literal["client", "worker"] | None = None,
    booking_status: BookingStatus | None = Query(None, alias="status"),
):
    return unwrap(market.list_bookings(auth.user_id, role=role, status=booking_status))


@router.get("/{booking_id}")
@limiter.limit("60/minute")
async def get_booking(request: Request, booking_id: str, auth: CurrentUser, market: Market):
    return unwrap(market.get_booking(booking_id, auth.user_id))


@router.post("/{booking_id}/start")
@limiter.limit("20/minute")
async def start_work(request: Request, booking_id: str, auth: CurrentUser, market: Market):
    logger.info(f"POST /bookings/{booking_id}/start | worker={auth.user_id}")
    return unwrap(market.start_work(booking_id, auth.user_id))


@router.post("/{booking_id}/complete")
@limiter.limit("20/minute")
async def mark_worker_completed(request: Request, booking_id: str, auth: CurrentUser, market: Market):
    """Worker reports the work done. Auto-release rules start counting from here."""
    logger.info(f"POST /bookings/{booking_id}/complete | worker={auth.user_id}")
    return unwrap(market.mark_worker_completed(booking_id, auth.user_id))


@router.post("/{booking_id}/confirm")
@limiter.limit("10/minute")
async def confirm_work_completion(request: Request, booking_id: str, auth: CurrentUser, market: Market):
    """Client confirms the work; escrow is released to the worker."""
    logger.info(f"POST /bookings/{booking_id}/confirm | client={auth.user_id}")
    return unwrap(market.confirm_work_completion(booking_id, auth.user_id))


@router.post("/{booking_id}/refund")
@limiter.limit("10/minute")
async def request_full_refund(
    request: Request,
    booking_id: str,
    auth: CurrentUser,
    market: Market,
    refund_request: OptionalReasonRequest | None = None,
):
    reason = refund_request.reason if refund_request else None
    logger.info(f"POST /bookings/{booking_id}/refund | client={auth.user_id}")
    return unwrap(market.request_full_refund(booking_id, auth.user_id, reason))


@router.post("/{booking_id}/cancellation")
@limiter.limit("10/minute")
async def request_cancellation(
    request: Request, booking_id: str, cancel_request: ReasonRequest, auth: CurrentUser, market: Market
):
    """Ask the other party to agree to cancel."""
    return unwrap(market.request_cancellation(booking_id, auth.user_id, cancel_request.reason))


@router.post("/{booking_id}/cancellation/approve")
@limiter.limit("10/minute")
async def approve_cancellation(request: Request, booking_id: str, auth: CurrentUser, market: Market):
    logger.info(f"POST /bookings/{booking_id}/cancellation/approve | user={auth.user_id}")
    return unwrap(market.approve_cancellation(booking_id, auth.user_id))


@router.get("/{booking_id}/worker-cancel")
@limiter.limit("60/minute")
async def can_cancel(request: Request, booking_id: str, auth: CurrentUser, market: Market):
    """Whether the worker may cancel now, with hours elapsed and remaining."""
    return unwrap(market.can_cancel(booking_id, auth.user_id))


@router.post("/{booking_id}/worker-cancel")
@limiter.limit("10/minute")
async def cancel_as_worker(
    request: Request,
    booking_id: str,
    auth: CurrentUser,
    market: Market,
    cancel_request: OptionalReasonRequest | None = None,
):
    """Worker cancels after the waiting period. The client is refunded and the job reopens."""
    reason = cancel_request.reason if cancel_request else None
    logger.info(f"POST /bookings/{booking_id}/worker-cancel | worker={auth.user_id}")
    return unwrap(market.cancel_as_worker(booking_id, auth.user_id, reason))


@router.post("/{booking_id}/dispute")
@limiter.limit("10/minute")
async def raise_dispute(
    request: Request, booking_id: str, dispute_request: ReasonRequest, auth: CurrentUser, market: Market
):
    """Freeze the booking; auto-release skips disputed bookings."""
    logger.warning(f"POST /bookings/{booking_id}/dispute | user={auth.user_id}")
    return unwrap(market.raise_dispute(booking_id, auth.user_id, dispute_request.reason))


@router.post("/{booking_id}/resolve")
@limiter.limit("10/minute")
async def resolve_dispute(
    request: Request,
    booking_id: str,
    resolve_request: ResolveDisputeRequest,
    admin: AdminUser,
    market: Market,
):
    logger.info(
        f"POST /bookings/{booking_id}/resolve | admin={admin.user_id} | "
        f"resolution={resolve_request.resolution}"
    )
    return unwrap(
        market.resolve_dispute(booking_id, resolve_request.resolution, admin.user_id, resolve_request.note)
    )
