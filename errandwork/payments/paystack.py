"""Paystack payment provider.

Amounts are naira everywhere in errandwork; Paystack's API speaks kobo, so
conversion happens only here, at the wire.
"""

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from errandwork.errors import ProviderError
from errandwork.payments.provider import ChargeInitialization, PaymentVerification
from errandwork.types import ParseDatetimeError, parse_datetime, to_amount

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"
KOBO_PER_NAIRA = 100


def naira_to_kobo(amount) -> int:
    return int(to_amount(amount) * KOBO_PER_NAIRA)


def kobo_to_naira(kobo: int) -> Decimal:
    return to_amount(Decimal(kobo) / KOBO_PER_NAIRA)


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret_key: str) -> bool:
    """Check the ``x-paystack-signature`` header (HMAC-SHA512 of the raw body)."""
    if not signature:
        return False
    expected = hmac.new(secret_key.encode(), payload, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackProvider:
    """PaymentProvider backed by the Paystack REST API.

    Args:
        secret_key: Paystack secret key (sk_live_... / sk_test_...)
        base_url: API root, overridable for tests
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not secret_key:
            raise ValueError("Paystack secret key is required")
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Paystack request failed | {method} {path} | error={e}")
            raise ProviderError(f"Payment provider unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.warning(f"Paystack error | {method} {path} | status={response.status_code} | {message}")
            raise ProviderError(f"Payment provider error: {message}", details={"http_status": response.status_code})
        return body.get("data") or {}

    def verify_payment(self, reference: str) -> PaymentVerification:
        """Look up a transaction by reference."""
        if not reference:
            raise ValueError("Payment reference is required")
        data = self._request("GET", f"/transaction/verify/{reference}")
        try:
            paid_at = parse_datetime(data.get("paid_at") or data.get("paidAt"))
        except ParseDatetimeError:
            paid_at = None
        metadata = data.get("metadata")
        verification = PaymentVerification(
            reference=data.get("reference", reference),
            status=data.get("status", "unknown"),
            amount=kobo_to_naira(int(data.get("amount") or 0)),
            currency=data.get("currency") or "NGN",
            paid_at=paid_at,
            channel=data.get("channel"),
            metadata=metadata if isinstance(metadata, dict) else {},
        )
        logger.info(
            f"Payment verified | ref={verification.reference} | status={verification.status} | "
            f"amount={verification.amount}"
        )
        return verification

    def initialize_charge(
        self,
        email: str,
        amount,
        reference: str,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChargeInitialization:
        """Start a hosted checkout for a wallet top-up."""
        if to_amount(amount) <= 0:
            raise ValueError("Amount must be positive")
        data = self._request(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": naira_to_kobo(amount),
                "reference": reference,
                "callback_url": callback_url,
                "metadata": metadata or {},
            },
        )
        return ChargeInitialization(
            authorization_url=data["authorization_url"],
            reference=data.get("reference", reference),
            access_code=data.get("access_code"),
        )
