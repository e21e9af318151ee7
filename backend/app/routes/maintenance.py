"""Maintenance routes.

Endpoints the external scheduler calls periodically (the ``errandwork``
CLI wraps them):
- Auto-release sweep over held bookings
- Expiry of selections past the acceptance window
- Expiry of open jobs past their expiry date

Callers authenticate with the X-Cron-Key header or an admin token.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from ..auth import AdminUser, MaintenanceCaller
from ..dependencies import Market, unwrap
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("maintenance")
router = APIRouter(prefix="/maintenance", tags=["maintenance"])

# Upper bound on rows counted for the health report
HEALTH_SCAN_LIMIT = 1000


# =============================================================================
# Request/Response Models
# =============================================================================


class SweepRequest(BaseModel):
    """Request to run the auto-release sweep."""

    dry_run: bool = Field(
        default=False, description="If true, report what would be released without moving money"
    )


class RuleToggleRequest(BaseModel):
    enabled: bool


class ManualReleaseRequest(BaseModel):
    rule_id: str | None = Field(default=None, description="Rule to attribute the release to")


class LedgerStatus(BaseModel):
    total_escrow: str
    total_held: str
    balanced: bool


class HealthResponse(BaseModel):
    """Health check for the maintenance subsystem."""

    status: str
    counts: dict[str, int]
    ledger: LedgerStatus
    checked_at: datetime


# =============================================================================
# Routes
# =============================================================================


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def maintenance_health(request: Request, caller: MaintenanceCaller, market: Market):
    """
    Health check for the maintenance subsystem.

    Counts the work the next sweeps would pick up, including settlements
    whose ledger write is still outstanding, and checks that total wallet
    escrow equals the budgets of held bookings.
    """
    logger.info(f"GET /maintenance/health | caller={caller.user_id}")
    now = datetime.now(timezone.utc)
    window = timedelta(hours=market.config.acceptance_window_hours)

    held = market.bookings.storage.list_bookings(payment_status="held", limit=HEALTH_SCAN_LIMIT)
    lapsed_selections = market.jobs.storage.list_applications(
        status="selected", selected_before=now - window, limit=HEALTH_SCAN_LIMIT
    )
    expired_jobs = market.jobs.storage.list_jobs(
        status="open", expires_before=now, limit=HEALTH_SCAN_LIMIT
    )
    unsettled = market.escrow.list_unsettled(limit=HEALTH_SCAN_LIMIT)
    counts = {
        "held_bookings": len(held),
        "awaiting_confirmation": sum(1 for b in held if b.status == "worker_completed"),
        "disputed": sum(1 for b in held if b.is_disputed),
        "lapsed_selections": len(lapsed_selections),
        "expired_open_jobs": len(expired_jobs),
        "unsettled": len(unsettled),
    }

    check = market.ledger_check()
    if not check.balanced:
        overall = "ledger_mismatch"
        logger.error(
            f"Ledger mismatch | escrow={check.total_escrow} | held={check.total_held}"
        )
    elif lapsed_selections or expired_jobs or unsettled:
        overall = "action_needed"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        counts=counts,
        ledger=LedgerStatus(
            total_escrow=str(check.total_escrow),
            total_held=str(check.total_held),
            balanced=check.balanced,
        ),
        checked_at=now,
    )


@router.post("/auto-release")
@limiter.limit("10/minute")
async def run_auto_release(
    request: Request,
    caller: MaintenanceCaller,
    market: Market,
    sweep_request: SweepRequest | None = None,
):
    """
    Evaluate enabled rules against held bookings and release the matches.

    Set dry_run=true to see what would be released without moving money.
    One booking failing does not stop the sweep; it is reported as failed.
    """
    dry_run = sweep_request.dry_run if sweep_request else False
    triggered_by = "cron" if caller.is_cron else "manual"
    logger.info(f"POST /maintenance/auto-release | caller={caller.user_id} | dry_run={dry_run}")
    report = unwrap(market.run_auto_release_sweep(triggered_by=triggered_by, dry_run=dry_run))["data"]
    if report["failed"]:
        logger.warning(f"Auto-release sweep had failures | failed={report['failed']}")
    return report


@router.post("/expire-selections")
@limiter.limit("10/minute")
async def expire_selections(request: Request, caller: MaintenanceCaller, market: Market):
    """Unpick selections whose acceptance window has passed and refund the holds."""
    logger.info(f"POST /maintenance/expire-selections | caller={caller.user_id}")
    return unwrap(market.expire_selections())["data"]


@router.post("/expire-jobs")
@limiter.limit("10/minute")
async def expire_jobs(request: Request, caller: MaintenanceCaller, market: Market):
    """Mark open jobs past their expiry date as expired."""
    logger.info(f"POST /maintenance/expire-jobs | caller={caller.user_id}")
    return unwrap(market.expire_jobs())["data"]


@router.get("/rules")
@limiter.limit("30/minute")
async def list_rules(request: Request, caller: MaintenanceCaller, market: Market):
    """Auto-release rules in evaluation order."""
    return unwrap(market.list_rules())["data"]


@router.post("/rules/{rule_id}/enabled")
@limiter.limit("10/minute")
async def set_rule_enabled(
    request: Request, rule_id: str, toggle: RuleToggleRequest, admin: AdminUser, market: Market
):
    logger.info(f"POST /maintenance/rules/{rule_id}/enabled | admin={admin.user_id} | enabled={toggle.enabled}")
    return unwrap(market.set_rule_enabled(rule_id, toggle.enabled))


@router.get("/logs")
@limiter.limit("30/minute")
async def list_release_logs(
    request: Request,
    caller: MaintenanceCaller,
    market: Market,
    booking_id: str | None = None,
    limit: int = Query(50, ge=1, le=500),
):
    """Auto-release log entries, newest first."""
    return unwrap(market.list_release_logs(booking_id=booking_id, limit=limit))["data"]


@router.post("/release/{booking_id}")
@limiter.limit("10/minute")
async def release_booking(
    request: Request,
    booking_id: str,
    admin: AdminUser,
    market: Market,
    release_request: ManualReleaseRequest | None = None,
):
    """Release one booking now, recorded in the auto-release log."""
    rule_id = release_request.rule_id if release_request else None
    logger.warning(f"POST /maintenance/release/{booking_id} | admin={admin.user_id} | rule={rule_id}")
    return unwrap(market.release_booking(booking_id, admin.user_id, rule_id=rule_id))
