"""Tests for applications, worker selection and selection expiry."""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from errandwork import Marketplace
from errandwork.eligibility import StaticWorkerEligibility
from errandwork.errors import (
    AlreadyAppliedError,
    InsufficientFundsError,
    InvalidStateError,
    JobNotOpenError,
    MarketplaceError,
    NoLongerAvailableError,
    SelectionExpiredError,
    UnauthorizedError,
    WorkerIneligibleError,
)
from errandwork.types import utc_now

CLIENT = "client-1"
WORKER = "worker-1"
OTHER_WORKER = "worker-2"


def _post(market, budget="20000"):
    return market.jobs.create_job(CLIENT, "Fix kitchen tap", Decimal(budget), category="plumbing")


class TestApplying:
    """Tests for worker applications."""

    def test_apply_counts_applicants(self, market, notifier):
        job = _post(market)
        market.jobs.apply(job.id, WORKER, "I have tools")

        assert market.jobs.get_job(job.id).applicant_count == 1
        assert "application_received" in notifier.kinds_for(CLIENT)

    def test_one_active_application_per_worker(self, market):
        job = _post(market)
        market.jobs.apply(job.id, WORKER)
        with pytest.raises(AlreadyAppliedError):
            market.jobs.apply(job.id, WORKER)

    def test_withdrawn_worker_may_reapply(self, market):
        job = _post(market)
        application = market.jobs.apply(job.id, WORKER)
        market.jobs.withdraw(application.id, WORKER)

        again = market.jobs.apply(job.id, WORKER)
        assert again.status == "pending"

    def test_client_cannot_apply_to_own_job(self, market):
        job = _post(market)
        with pytest.raises(UnauthorizedError):
            market.jobs.apply(job.id, CLIENT)

    def test_cancelled_job_not_open(self, market):
        job = _post(market)
        market.jobs.cancel_job(job.id, CLIENT)
        with pytest.raises(JobNotOpenError):
            market.jobs.apply(job.id, WORKER)

    def test_ineligible_worker(self, notifier):
        market = Marketplace(notifier=notifier, eligibility=StaticWorkerEligibility(verified=[WORKER]))
        job = _post(market)
        with pytest.raises(WorkerIneligibleError):
            market.jobs.apply(job.id, OTHER_WORKER)

    def test_past_expiry_rejected_at_creation(self, market):
        with pytest.raises(ValueError):
            market.jobs.create_job(CLIENT, "Late", Decimal("100"), expires_at=utc_now() - timedelta(minutes=1))


class TestSelection:
    """Tests for selecting a worker."""

    def test_select_decline_scenario(self, market, fund, notifier):
        fund(CLIENT, "50000")
        job = _post(market)
        application = market.jobs.apply(job.id, WORKER)

        selection = market.jobs.select_worker(job.id, application.id, CLIENT)

        wallet = market.wallets.get_wallet(CLIENT)
        assert (wallet.balance, wallet.escrow) == (Decimal("30000.00"), Decimal("20000.00"))
        assert (selection.booking.status, selection.booking.payment_status) == ("confirmed", "held")
        assert market.jobs.get_job(job.id).status == "assigned"

        market.jobs.decline_selection(application.id, WORKER, reason="Too far")

        booking = market.bookings.get_booking(selection.booking.id)
        assert booking.status == "cancelled"
        assert booking.payment_status == "refunded"
        wallet = market.wallets.get_wallet(CLIENT)
        assert (wallet.balance, wallet.escrow) == (Decimal("50000.00"), Decimal("0.00"))
        assert market.jobs.get_job(job.id).status == "open"
        assert "selection_declined" in notifier.kinds_for(CLIENT)

    def test_insufficient_funds_leaves_job_open(self, market, fund):
        fund(CLIENT, "5000")
        job = _post(market)
        application = market.jobs.apply(job.id, WORKER)

        with pytest.raises(InsufficientFundsError) as exc_info:
            market.jobs.select_worker(job.id, application.id, CLIENT)

        assert exc_info.value.details["amount_needed"] == "20000.00"
        assert market.jobs.get_job(job.id).status == "open"
        assert market.jobs.get_application(application.id).status == "pending"

    def test_only_client_selects(self, market, fund):
        fund(CLIENT)
        job = _post(market)
        application = market.jobs.apply(job.id, WORKER)
        with pytest.raises(UnauthorizedError):
            market.jobs.select_worker(job.id, application.id, OTHER_WORKER)

    def test_second_selection_loses(self, market, fund):
        fund(CLIENT, "100000")
        job = _post(market)
        first = market.jobs.apply(job.id, WORKER)
        second = market.jobs.apply(job.id, OTHER_WORKER)
        market.jobs.select_worker(job.id, first.id, CLIENT)

        with pytest.raises(NoLongerAvailableError):
            market.jobs.select_worker(job.id, second.id, CLIENT)
        assert market.wallets.get_wallet(CLIENT).escrow == Decimal("20000.00")
        assert market.jobs.get_application(second.id).status == "pending"

    def test_concurrent_selection_holds_once(self, market, fund):
        fund(CLIENT, "100000")
        job = _post(market)
        applications = [market.jobs.apply(job.id, w) for w in (WORKER, OTHER_WORKER)]
        barrier = threading.Barrier(len(applications))
        outcomes = []

        def select(application_id):
            barrier.wait()
            try:
                market.jobs.select_worker(job.id, application_id, CLIENT)
                outcomes.append("selected")
            except MarketplaceError as e:
                outcomes.append(e.code.value)

        threads = [threading.Thread(target=select, args=(a.id,)) for a in applications]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["no_longer_available", "selected"]
        wallet = market.wallets.get_wallet(CLIENT)
        assert (wallet.balance, wallet.escrow) == (Decimal("80000.00"), Decimal("20000.00"))
        assert market.ledger_check().balanced


class TestAcceptance:
    """Tests for the acceptance window."""

    def test_accept_within_window(self, market, hire):
        selection = hire(accept=False)
        result = market.jobs.accept_selection(selection.application.id, WORKER)

        assert result.application.status == "accepted"
        assert result.booking.status == "accepted"

    def test_only_selected_worker_accepts(self, market, hire):
        selection = hire(accept=False)
        with pytest.raises(UnauthorizedError):
            market.jobs.accept_selection(selection.application.id, OTHER_WORKER)

    def test_late_accept_expires_selection(self, market, hire):
        selection = hire(accept=False)
        late = selection.accept_by + timedelta(seconds=1)

        with pytest.raises(SelectionExpiredError):
            market.jobs.accept_selection(selection.application.id, WORKER, now=late)

        assert market.jobs.get_application(selection.application.id).status == "unpicked"
        assert market.bookings.get_booking(selection.booking.id).payment_status == "refunded"
        assert market.jobs.get_job(selection.job.id).status == "open"

    def test_unpick_before_accept(self, market, hire):
        selection = hire(accept=False)
        application = market.jobs.unpick_worker(selection.job.id, CLIENT)

        assert application.status == "unpicked"
        assert market.wallets.get_wallet(CLIENT).escrow == Decimal("0.00")

    def test_unpick_after_accept_refused(self, market, hire):
        selection = hire()
        with pytest.raises(InvalidStateError, match="already accepted"):
            market.jobs.unpick_worker(selection.job.id, CLIENT)

    def test_unpicked_worker_cannot_reapply(self, market, hire):
        selection = hire(accept=False)
        market.jobs.unpick_worker(selection.job.id, CLIENT)
        with pytest.raises(AlreadyAppliedError):
            market.jobs.apply(selection.job.id, WORKER)


class TestSweeps:
    """Tests for selection and job expiry sweeps."""

    def test_expire_selections(self, market, hire):
        past = utc_now() - timedelta(hours=2)
        selection = hire(accept=False, now=past)
        fresh = hire(accept=False)

        result = market.jobs.expire_selections()

        assert result.expired == 1
        assert market.jobs.get_application(selection.application.id).status == "unpicked"
        assert market.jobs.get_application(fresh.application.id).status == "selected"

    def test_expire_selections_is_repeatable(self, market, hire):
        hire(accept=False, now=utc_now() - timedelta(hours=2))
        market.jobs.expire_selections()
        assert market.jobs.expire_selections().expired == 0

    def test_expire_jobs(self, market):
        job = _post(market)
        later = job.expires_at + timedelta(seconds=1)

        result = market.jobs.expire_jobs(now=later)

        assert result.ids == [job.id]
        assert market.jobs.get_job(job.id).status == "expired"
