"""Tests for tokens, cron key hashing and client IP resolution."""

from datetime import timedelta

import pytest
from app.auth import create_access_token, decode_token, hash_secret, verify_secret
from app.config import get_settings
from app.rate_limit import load_trusted_networks
from fastapi import HTTPException

from api_helpers import CLIENT_ID


class TestSecrets:
    def test_hash_and_verify(self):
        hashed = hash_secret("cron-secret")
        assert hashed != "cron-secret"
        assert verify_secret("cron-secret", hashed)
        assert not verify_secret("wrong", hashed)

    def test_malformed_hash_is_false(self):
        assert verify_secret("cron-secret", "not-a-bcrypt-hash") is False


class TestTokens:
    def test_round_trip_carries_role(self):
        settings = get_settings()
        token = create_access_token(CLIENT_ID, settings, role="admin")
        payload = decode_token(token, settings)
        assert payload["sub"] == CLIENT_ID
        assert payload["role"] == "admin"
        assert payload["type"] == "access"

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError, match="Invalid role"):
            create_access_token(CLIENT_ID, get_settings(), role="cron")

    def test_expired_token_rejected(self):
        settings = get_settings()
        token = create_access_token(CLIENT_ID, settings, expires_delta=timedelta(seconds=-1))
        with pytest.raises(HTTPException) as exc_info:
            decode_token(token, settings)
        assert exc_info.value.status_code == 401

    def test_expired_token_on_route(self, client):
        token = create_access_token(CLIENT_ID, get_settings(), expires_delta=timedelta(seconds=-1))
        response = client.get("/wallets/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_garbage_token_on_route(self, client):
        response = client.get("/wallets/me", headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401


class TestTrustedProxies:
    def test_invalid_cidr_skipped(self):
        networks = load_trusted_networks("10.0.0.0/8, nonsense, 192.168.1.0/24")
        assert [str(n) for n in networks] == ["10.0.0.0/8", "192.168.1.0/24"]

    def test_empty_falls_back_to_private_ranges(self):
        networks = load_trusted_networks("")
        assert any(str(n) == "127.0.0.0/8" for n in networks)


class TestServiceInfo:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "errandwork-backend"
