"""Wallet routes.

Balances, ledger history, and Paystack-funded top-ups. A top-up is only
credited after the provider confirms the payment; the payment reference is
the ledger entry id, so verifying the same reference twice (or receiving
the webhook after a manual verify) credits once.
"""

import json
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from errandwork.payments import verify_webhook_signature

from ..auth import CurrentUser
from ..config import Settings, get_settings
from ..dependencies import Market, unwrap
from ..logging_config import get_logger
from ..rate_limit import limiter

logger = get_logger("wallets")
router = APIRouter(prefix="/wallets", tags=["wallets"])

PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"


# =============================================================================
# Request Models
# =============================================================================


class TopUpInitializeRequest(BaseModel):
    """Start a hosted checkout."""

    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)
    amount: Decimal = Field(..., gt=0, le=Decimal("10000000"))


class TopUpVerifyRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=200)


# =============================================================================
# Routes
# =============================================================================


@router.get("/me")
@limiter.limit("60/minute")
async def get_my_wallet(request: Request, auth: CurrentUser, market: Market):
    """Balance (spendable) and escrow (held against bookings)."""
    return unwrap(market.get_wallet(auth.user_id))


@router.get("/me/transactions")
@limiter.limit("60/minute")
async def list_my_transactions(
    request: Request,
    auth: CurrentUser,
    market: Market,
    limit: int = Query(100, ge=1, le=1000),
):
    return unwrap(market.list_transactions(auth.user_id, limit=limit))


@router.post("/top-up/initialize")
@limiter.limit("10/minute")
async def initialize_top_up(
    request: Request,
    top_up_request: TopUpInitializeRequest,
    auth: CurrentUser,
    market: Market,
    settings: Annotated[Settings, Depends(get_settings)],
):
    logger.info(f"POST /wallets/top-up/initialize | user={auth.user_id} | amount={top_up_request.amount}")
    return unwrap(
        market.initialize_top_up(
            auth.user_id,
            top_up_request.email,
            top_up_request.amount,
            settings.paystack_callback_url,
        )
    )


@router.post("/top-up/verify")
@limiter.limit("10/minute")
async def verify_top_up(request: Request, verify_request: TopUpVerifyRequest, auth: CurrentUser, market: Market):
    """Verify a payment reference with the provider and credit the wallet once."""
    logger.info(f"POST /wallets/top-up/verify | user={auth.user_id} | ref={verify_request.reference}")
    return unwrap(market.top_up(auth.user_id, verify_request.reference))


@router.post("/webhooks/paystack")
async def paystack_webhook(
    request: Request,
    market: Market,
    settings: Annotated[Settings, Depends(get_settings)],
    signature: Annotated[str | None, Header(alias=PAYSTACK_SIGNATURE_HEADER)] = None,
):
    """Credit wallets for ``charge.success`` events signed with our secret key."""
    payload = await request.body()
    if not settings.paystack_secret_key or not verify_webhook_signature(
        payload, signature, settings.paystack_secret_key
    ):
        logger.warning("Paystack webhook rejected | reason=bad_signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    if event.get("event") != "charge.success":
        return {"success": True, "message": f"Ignored event {event.get('event')}"}

    data = event.get("data") or {}
    reference = data.get("reference")
    user_id = (data.get("metadata") or {}).get("user_id")
    if not reference or not user_id:
        logger.warning(f"Paystack webhook missing reference or user | ref={reference}")
        return {"success": False, "message": "Missing reference or user_id"}

    logger.info(f"Paystack webhook | event=charge.success | ref={reference} | user={user_id}")
    return unwrap(market.top_up(user_id, reference))
