"""Tests for wallet routes and the Paystack webhook."""

import hashlib
import hmac
import json

from api_helpers import CLIENT_ID, TEST_PAYSTACK_SECRET, WORKER_ID


def _sign(body: bytes, secret: str = TEST_PAYSTACK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def _charge_success(reference: str, user_id: str, amount_kobo: int = 500000) -> bytes:
    return json.dumps(
        {
            "event": "charge.success",
            "data": {"reference": reference, "amount": amount_kobo, "metadata": {"user_id": user_id}},
        }
    ).encode()


class TestWallet:
    """Tests for reading balances and history."""

    def test_new_wallet_is_empty(self, client, client_headers):
        response = client.get("/wallets/me", headers=client_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user_id"] == CLIENT_ID
        assert data["balance"] == "0.00"
        assert data["escrow"] == "0.00"

    def test_requires_auth(self, client):
        assert client.get("/wallets/me").status_code == 401

    def test_transactions_listed(self, client, funded_client, client_headers):
        response = client.get("/wallets/me/transactions", headers=client_headers)
        assert response.status_code == 200
        entries = response.json()["data"]
        assert [e["type"] for e in entries] == ["topup"]
        assert entries[0]["amount"] == "50000.00"


class TestTopUp:
    """Tests for provider-verified top-ups."""

    def test_verify_credits_once(self, client, provider, client_headers):
        provider.add_payment("ref_abc", "5000", CLIENT_ID)

        first = client.post("/wallets/top-up/verify", json={"reference": "ref_abc"}, headers=client_headers)
        second = client.post("/wallets/top-up/verify", json={"reference": "ref_abc"}, headers=client_headers)
        assert first.status_code == second.status_code == 200
        assert first.json()["data"]["applied"] is True
        assert second.json()["data"]["applied"] is False

        wallet = client.get("/wallets/me", headers=client_headers).json()["data"]
        assert wallet["balance"] == "5000.00"

    def test_failed_payment_is_bad_gateway(self, client, provider, client_headers):
        provider.add_payment("ref_failed", "5000", CLIENT_ID, status="failed")
        response = client.post("/wallets/top-up/verify", json={"reference": "ref_failed"}, headers=client_headers)
        assert response.status_code == 502
        assert response.json()["detail"]["reason"] == "provider_error"

    def test_someone_elses_payment_rejected(self, client, provider, worker_headers):
        provider.add_payment("ref_theirs", "5000", CLIENT_ID)
        response = client.post("/wallets/top-up/verify", json={"reference": "ref_theirs"}, headers=worker_headers)
        assert response.status_code == 502

    def test_initialize_returns_checkout_url(self, client, provider, client_headers):
        response = client.post(
            "/wallets/top-up/initialize",
            json={"email": "client@example.com", "amount": "2500"},
            headers=client_headers,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["authorization_url"].startswith("https://checkout.test/topup_")
        assert provider.initialized[0]["metadata"] == {"user_id": CLIENT_ID}

    def test_initialize_rejects_bad_email(self, client, client_headers):
        response = client.post(
            "/wallets/top-up/initialize", json={"email": "nope", "amount": "2500"}, headers=client_headers
        )
        assert response.status_code == 422


class TestPaystackWebhook:
    """Tests for the signed webhook."""

    def test_valid_signature_credits_wallet(self, client, market, provider):
        provider.add_payment("ref_hook", "5000", WORKER_ID)
        body = _charge_success("ref_hook", WORKER_ID)

        response = client.post(
            "/wallets/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": _sign(body), "content-type": "application/json"},
        )
        assert response.status_code == 200
        assert str(market.wallets.get_wallet(WORKER_ID).balance) == "5000.00"

    def test_replayed_webhook_credits_once(self, client, market, provider):
        provider.add_payment("ref_twice", "5000", WORKER_ID)
        body = _charge_success("ref_twice", WORKER_ID)
        headers = {"x-paystack-signature": _sign(body)}

        client.post("/wallets/webhooks/paystack", content=body, headers=headers)
        client.post("/wallets/webhooks/paystack", content=body, headers=headers)
        assert str(market.wallets.get_wallet(WORKER_ID).balance) == "5000.00"

    def test_bad_signature_rejected(self, client, market, provider):
        provider.add_payment("ref_forged", "5000", WORKER_ID)
        body = _charge_success("ref_forged", WORKER_ID)

        response = client.post(
            "/wallets/webhooks/paystack",
            content=body,
            headers={"x-paystack-signature": _sign(body, secret="wrong")},
        )
        assert response.status_code == 401
        assert str(market.wallets.get_wallet(WORKER_ID).balance) == "0.00"

    def test_missing_signature_rejected(self, client):
        body = _charge_success("ref_none", WORKER_ID)
        assert client.post("/wallets/webhooks/paystack", content=body).status_code == 401

    def test_other_events_ignored(self, client):
        body = json.dumps({"event": "transfer.success", "data": {}}).encode()
        response = client.post("/wallets/webhooks/paystack", content=body, headers={"x-paystack-signature": _sign(body)})
        assert response.status_code == 200
        assert "Ignored" in response.json()["message"]
