"""Pytest configuration and fixtures."""

import os
import secrets
from decimal import Decimal

import bcrypt
import pytest
from api_helpers import ADMIN_ID, CLIENT_ID, OTHER_WORKER_ID, TEST_PAYSTACK_SECRET, WORKER_ID

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"
TEST_CRON_KEY = f"cron-{secrets.token_urlsafe(16)}"

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ.setdefault("CRON_KEY_HASH", bcrypt.hashpw(TEST_CRON_KEY.encode(), bcrypt.gensalt()).decode())
os.environ.setdefault("PAYSTACK_SECRET_KEY", TEST_PAYSTACK_SECRET)

from app.dependencies import get_marketplace  # noqa: E402
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from errandwork import Marketplace, MarketplaceConfig  # noqa: E402
from errandwork.notifications import RecordingNotifier  # noqa: E402
from errandwork.payments import ChargeInitialization, PaymentVerification  # noqa: E402


class FakePaymentProvider:
    """Answers verify/initialize from a dict of known references."""

    def __init__(self):
        self.payments: dict[str, PaymentVerification] = {}
        self.initialized: list[dict] = []

    def add_payment(self, reference: str, amount, user_id: str, status: str = "success"):
        self.payments[reference] = PaymentVerification(
            reference=reference,
            status=status,
            amount=Decimal(str(amount)),
            metadata={"user_id": user_id},
        )

    def verify_payment(self, reference: str) -> PaymentVerification:
        if reference not in self.payments:
            return PaymentVerification(reference=reference, status="failed", amount=Decimal("0"))
        return self.payments[reference]

    def initialize_charge(self, email, amount, reference, callback_url, metadata=None):
        self.initialized.append(
            {"email": email, "amount": amount, "reference": reference, "metadata": metadata}
        )
        return ChargeInitialization(
            authorization_url=f"https://checkout.test/{reference}", reference=reference
        )


@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path, monkeypatch):
    """Keep money-event logs out of the real home directory."""
    monkeypatch.setenv("ERRANDWORK_DATA_DIR", str(tmp_path / "errandwork"))


@pytest.fixture(autouse=True)
def _no_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def market(provider, notifier):
    """In-memory marketplace with default auto-release rules."""
    marketplace = Marketplace(
        notifier=notifier,
        payment_provider=provider,
        config=MarketplaceConfig(),
    )
    marketplace.auto_release.ensure_default_rules()
    return marketplace


@pytest.fixture
def client(market):
    """Test client wired to the in-memory marketplace."""
    app.dependency_overrides[get_marketplace] = lambda: market
    yield TestClient(app)
    app.dependency_overrides.clear()


def _headers(user_id: str, role: str = "user") -> dict:
    from app.auth import create_access_token
    from app.config import get_settings

    token = create_access_token(user_id, get_settings(), role=role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client_headers():
    return _headers(CLIENT_ID)


@pytest.fixture
def worker_headers():
    return _headers(WORKER_ID)


@pytest.fixture
def other_worker_headers():
    return _headers(OTHER_WORKER_ID)


@pytest.fixture
def admin_headers():
    return _headers(ADMIN_ID, role="admin")


@pytest.fixture
def cron_headers():
    return {"X-Cron-Key": TEST_CRON_KEY}


@pytest.fixture
def funded_client(market):
    """Give the test client ₦50,000 to spend."""
    market.wallets.top_up(CLIENT_ID, Decimal("50000"), "ref_seed_client")
    return CLIENT_ID
