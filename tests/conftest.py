"""
Pytest fixtures for the errandwork marketplace core.
"""

from decimal import Decimal

import pytest

from errandwork import Marketplace, MarketplaceConfig
from errandwork.notifications import RecordingNotifier

CLIENT = "client-1"
WORKER = "worker-1"
OTHER_WORKER = "worker-2"


@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path, monkeypatch):
    """Keep money-event and local logs inside the test's tmp dir."""
    monkeypatch.setenv("ERRANDWORK_DATA_DIR", str(tmp_path / "errandwork"))
    yield


@pytest.fixture
def config():
    return MarketplaceConfig()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def market(config, notifier):
    """In-memory marketplace with the default auto-release rules."""
    marketplace = Marketplace(notifier=notifier, config=config)
    marketplace.auto_release.ensure_default_rules()
    return marketplace


@pytest.fixture
def fund(market):
    """Top up a wallet: ``fund(user_id, amount)``."""
    counter = {"n": 0}

    def _fund(user_id: str = CLIENT, amount="50000"):
        counter["n"] += 1
        return market.wallets.top_up(user_id, Decimal(str(amount)), f"seed-{user_id}-{counter['n']}")

    return _fund


@pytest.fixture
def hire(market, fund):
    """Post a job, select WORKER and (optionally) accept.

    Returns the SelectionResult; ``now`` backdates every step.
    """

    def _hire(budget="20000", now=None, accept=True, worker=WORKER):
        if market.wallets.available_balance(CLIENT) < Decimal(budget):
            fund(CLIENT, budget)
        job = market.jobs.create_job(CLIENT, "Deliver groceries", Decimal(budget))
        application = market.jobs.apply(job.id, worker, "Available today", now=now)
        selection = market.jobs.select_worker(job.id, application.id, CLIENT, now=now)
        if accept:
            market.jobs.accept_selection(application.id, worker, now=now)
        return selection

    return _hire
