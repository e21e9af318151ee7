"""Tests for the Paystack provider over a mocked HTTP transport."""

import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from errandwork.errors import ProviderError
from errandwork.payments.paystack import (
    PaystackProvider,
    kobo_to_naira,
    naira_to_kobo,
    verify_webhook_signature,
)

SECRET = "sk_test_only_0000000000"


def _provider(handler):
    return PaystackProvider(SECRET, base_url="https://paystack.test", transport=httpx.MockTransport(handler))


def test_amount_conversion():
    assert naira_to_kobo("150.50") == 15050
    assert kobo_to_naira(5000000) == Decimal("50000.00")


def test_missing_secret_rejected():
    with pytest.raises(ValueError):
        PaystackProvider("")


class TestVerifyPayment:
    def test_successful_payment(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "data": {
                        "reference": "ref-1",
                        "status": "success",
                        "amount": 2500000,
                        "currency": "NGN",
                        "paid_at": "2026-03-01T10:00:00.000Z",
                        "channel": "card",
                        "metadata": {"user_id": "client-1"},
                    },
                },
            )

        verification = _provider(handler).verify_payment("ref-1")

        assert seen == {"path": "/transaction/verify/ref-1", "auth": f"Bearer {SECRET}"}
        assert verification.successful
        assert verification.amount == Decimal("25000.00")
        assert verification.metadata == {"user_id": "client-1"}
        assert verification.paid_at.year == 2026

    def test_abandoned_payment_is_not_successful(self):
        def handler(request):
            return httpx.Response(
                200, json={"status": True, "data": {"reference": "ref-2", "status": "abandoned", "amount": 0}}
            )

        verification = _provider(handler).verify_payment("ref-2")
        assert not verification.successful
        assert verification.metadata == {}

    def test_http_error_raises_provider_error(self):
        def handler(request):
            return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})

        with pytest.raises(ProviderError) as excinfo:
            _provider(handler).verify_payment("missing")
        assert "Transaction reference not found" in excinfo.value.message
        assert excinfo.value.details == {"http_status": 400}

    def test_status_false_raises(self):
        def handler(request):
            return httpx.Response(200, json={"status": False, "message": "Invalid key"})

        with pytest.raises(ProviderError):
            _provider(handler).verify_payment("ref-3")

    def test_connection_failure_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError) as excinfo:
            _provider(handler).verify_payment("ref-4")
        assert "unreachable" in excinfo.value.message

    def test_blank_reference(self):
        with pytest.raises(ValueError):
            _provider(lambda request: httpx.Response(200)).verify_payment("")


class TestInitializeCharge:
    def test_sends_kobo(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "data": {
                        "authorization_url": "https://checkout.paystack.test/abc",
                        "access_code": "abc",
                        "reference": "topup_1",
                    },
                },
            )

        init = _provider(handler).initialize_charge(
            "client@example.com", "1500", "topup_1", "https://app.test/cb", metadata={"user_id": "client-1"}
        )

        assert seen["body"]["amount"] == 150000
        assert seen["body"]["metadata"] == {"user_id": "client-1"}
        assert init.authorization_url == "https://checkout.paystack.test/abc"
        assert init.access_code == "abc"

    def test_non_positive_amount(self):
        with pytest.raises(ValueError):
            _provider(lambda request: httpx.Response(200)).initialize_charge(
                "client@example.com", "0", "topup_2", "https://app.test/cb"
            )


class TestWebhookSignature:
    def test_valid_signature(self):
        body = b'{"event":"charge.success"}'
        signature = hmac.new(SECRET.encode(), body, hashlib.sha512).hexdigest()
        assert verify_webhook_signature(body, signature, SECRET)

    def test_tampered_body(self):
        signature = hmac.new(SECRET.encode(), b"{}", hashlib.sha512).hexdigest()
        assert not verify_webhook_signature(b'{"amount":1}', signature, SECRET)

    def test_missing_signature(self):
        assert not verify_webhook_signature(b"{}", None, SECRET)
