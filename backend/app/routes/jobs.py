"""Job routes.

Posting, applying, selection arbitration and the acceptance window.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from ..auth import CurrentUser
from ..dependencies import Market, unwrap
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])


# =============================================================================
# Request Models
# =============================================================================

JobStatus = Literal["open", "assigned", "in_progress", "completed", "cancelled", "expired"]


class JobCreate(BaseModel):
    """Request to post a job."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    category: str = Field(default="general", min_length=1, max_length=50)
    budget_min: Decimal | None = Field(default=None, gt=0)
    budget_max: Decimal = Field(..., gt=0)
    expires_at: datetime | None = None

    @field_validator("expires_at")
    @classmethod
    def expiry_must_be_future(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return v
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("Expiry must be in the future")
        return v


class ApplyRequest(BaseModel):
    """Request to apply to a job."""

    message: str = Field(default="", max_length=2000)


class SelectRequest(BaseModel):
    """Client picks one application."""

    application_id: str = Field(..., min_length=1)


class DeclineRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


# =============================================================================
# Routes
# =============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_job(request: Request, job_request: JobCreate, auth: CurrentUser, market: Market):
    """Post a job listing. The budget is held in escrow only when a worker is selected."""
    logger.info(f"POST /jobs | user={auth.user_id} | budget={job_request.budget_max}")
    return unwrap(
        market.create_job(
            auth.user_id,
            job_request.title,
            job_request.budget_max,
            budget_min=job_request.budget_min,
            category=job_request.category,
            description=job_request.description,
            expires_at=job_request.expires_at,
        )
    )


@router.get("")
@limiter.limit("60/minute")
async def list_jobs(
    request: Request,
    auth: CurrentUser,
    market: Market,
    job_status: JobStatus | None = Query(None, alias="status"),
    category: str | None = None,
    mine: bool = Query(False, description="Only jobs posted by the caller"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """List jobs, newest first. Defaults to open jobs."""
    filters = {"status": job_status or ("open" if not mine else None), "limit": limit, "offset": offset}
    if category:
        filters["category"] = category
    if mine:
        filters["client_id"] = auth.user_id
    return unwrap(market.list_jobs(**filters))


@router.get("/{job_id}")
@limiter.limit("60/minute")
async def get_job(request: Request, job_id: str, auth: CurrentUser, market: Market):
    return unwrap(market.get_job(job_id))


@router.get("/{job_id}/applications")
@limiter.limit("60/minute")
async def list_applications(request: Request, job_id: str, auth: CurrentUser, market: Market):
    """Applications for a job. Client only."""
    return unwrap(market.list_applications(job_id, auth.user_id))


@router.post("/{job_id}/apply", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def apply_to_job(
    request: Request, job_id: str, apply_request: ApplyRequest, auth: CurrentUser, market: Market
):
    logger.info(f"POST /jobs/{job_id}/apply | worker={auth.user_id}")
    return unwrap(market.apply_to_job(job_id, auth.user_id, apply_request.message))


@router.post("/{job_id}/select")
@limiter.limit("10/minute")
async def select_worker(
    request: Request, job_id: str, select_request: SelectRequest, auth: CurrentUser, market: Market
):
    """Pick an applicant. Holds the job budget in escrow and starts the acceptance window."""
    logger.info(
        f"POST /jobs/{job_id}/select | client={auth.user_id} | application={select_request.application_id}"
    )
    return unwrap(market.select_worker(job_id, select_request.application_id, auth.user_id))


@router.post("/{job_id}/unpick")
@limiter.limit("10/minute")
async def unpick_worker(request: Request, job_id: str, auth: CurrentUser, market: Market):
    """Release a selected worker before they accept. The hold is refunded."""
    logger.info(f"POST /jobs/{job_id}/unpick | client={auth.user_id}")
    return unwrap(market.unpick_worker(job_id, auth.user_id))


@router.post("/{job_id}/cancel")
@limiter.limit("10/minute")
async def cancel_job(request: Request, job_id: str, auth: CurrentUser, market: Market):
    logger.info(f"POST /jobs/{job_id}/cancel | client={auth.user_id}")
    return unwrap(market.cancel_job(job_id, auth.user_id))


@router.post("/applications/{application_id}/withdraw")
@limiter.limit("30/minute")
async def withdraw_application(request: Request, application_id: str, auth: CurrentUser, market: Market):
    return unwrap(market.withdraw_application(application_id, auth.user_id))


@router.post("/applications/{application_id}/accept")
@limiter.limit("10/minute")
async def accept_selection(request: Request, application_id: str, auth: CurrentUser, market: Market):
    """Selected worker accepts. Fails with selection_expired once the window has passed."""
    logger.info(f"POST /jobs/applications/{application_id}/accept | worker={auth.user_id}")
    return unwrap(market.accept_selection(application_id, auth.user_id))


@router.post("/applications/{application_id}/decline")
@limiter.limit("10/minute")
async def decline_selection(
    request: Request,
    application_id: str,
    auth: CurrentUser,
    market: Market,
    decline_request: DeclineRequest | None = None,
):
    """Selected worker declines. The client's hold is refunded and the job reopens."""
    reason = decline_request.reason if decline_request else None
    logger.info(f"POST /jobs/applications/{application_id}/decline | worker={auth.user_id}")
    return unwrap(market.decline_selection(application_id, auth.user_id, reason))
