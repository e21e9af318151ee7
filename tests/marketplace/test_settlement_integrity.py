"""Tests for money staying consistent when a write fails or a booking moves mid-flow."""

from datetime import timedelta
from decimal import Decimal

import pytest

from errandwork import Marketplace, MarketplaceConfig
from errandwork.errors import InvalidStateError
from errandwork.types import utc_now

CLIENT = "client-1"
WORKER = "worker-1"


def _finish(market, booking_id):
    market.bookings.start_work(booking_id, WORKER)
    return market.bookings.mark_worker_completed(booking_id, WORKER)


def _fail_once(monkeypatch, target, name):
    """Make ``target.name`` raise ConnectionError on its next call only."""
    original = getattr(target, name)
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConnectionError("storage unavailable")
        return original(*args, **kwargs)

    monkeypatch.setattr(target, name, flaky)


class TestPlatformFee:
    """Tests for the commission taken on release."""

    def test_release_splits_budget(self, market, hire, notifier):
        selection = hire()
        _finish(market, selection.booking.id)

        result = market.bookings.confirm_work_completion(selection.booking.id, CLIENT)

        assert result.booking.platform_fee == Decimal("1000.00")
        assert result.release.fee.transaction.id == f"fee_{selection.booking.id}"
        assert market.wallets.get_wallet(WORKER).total_earned == Decimal("19000.00")
        assert market.wallets.get_wallet("platform").balance == Decimal("1000.00")
        assert market.wallets.get_wallet(CLIENT).escrow == Decimal("0.00")
        assert market.ledger_check().balanced

        worker_payment = [p for uid, kind, p in notifier.sent if uid == WORKER and kind == "payment_released"]
        assert worker_payment[0]["amount"] == "19000.00"

    def test_zero_fee_pays_full_budget(self, notifier):
        market = Marketplace(notifier=notifier, config=MarketplaceConfig(platform_fee_percent=0))
        market.wallets.top_up(CLIENT, Decimal("20000"), "seed-1")
        job = market.jobs.create_job(CLIENT, "Deliver groceries", Decimal("20000"))
        application = market.jobs.apply(job.id, WORKER)
        selection = market.jobs.select_worker(job.id, application.id, CLIENT)
        market.jobs.accept_selection(application.id, WORKER)

        result = market.escrow.release_escrow(selection.booking.id, "test")

        assert result.release.fee is None
        assert market.wallets.get_wallet(WORKER).balance == Decimal("20000.00")
        assert market.wallets.list_transactions("platform") == []

    def test_disputed_release_takes_fee(self, market, hire):
        selection = hire()
        market.bookings.raise_dispute(selection.booking.id, CLIENT, "Late")

        result = market.bookings.resolve_dispute(selection.booking.id, "release", "admin-1")

        assert result.booking.platform_fee == Decimal("1000.00")
        assert market.wallets.get_wallet(WORKER).balance == Decimal("19000.00")


class TestSelectionUnwinding:
    """Tests for select_worker leaving no half-made selection behind."""

    def test_hold_entry_failure_reopens_job(self, market, fund, monkeypatch):
        fund(CLIENT, "20000")
        job = market.jobs.create_job(CLIENT, "Deliver groceries", Decimal("20000"))
        application = market.jobs.apply(job.id, WORKER)

        storage = market.wallets.storage
        original = storage.append_transaction

        def hold_unavailable(tx):
            if tx.id.startswith("hold_"):
                raise ConnectionError("ledger unavailable")
            return original(tx)

        monkeypatch.setattr(storage, "append_transaction", hold_unavailable)
        with pytest.raises(ConnectionError):
            market.jobs.select_worker(job.id, application.id, CLIENT)

        assert market.jobs.get_job(job.id).status == "open"
        assert market.jobs.get_application(application.id).status == "pending"
        assert market.bookings.storage.list_bookings(job_id=job.id) == []
        wallet = market.wallets.get_wallet(CLIENT)
        assert (wallet.balance, wallet.escrow) == (Decimal("20000.00"), Decimal("0.00"))
        assert not market.wallets.audit_wallet(CLIENT).drift

    def test_booking_save_failure_returns_hold(self, market, fund, monkeypatch):
        fund(CLIENT, "20000")
        job = market.jobs.create_job(CLIENT, "Deliver groceries", Decimal("20000"))
        application = market.jobs.apply(job.id, WORKER)
        _fail_once(monkeypatch, market.jobs.bookings, "save_booking")

        with pytest.raises(ConnectionError):
            market.jobs.select_worker(job.id, application.id, CLIENT)

        assert market.jobs.get_job(job.id).status == "open"
        wallet = market.wallets.get_wallet(CLIENT)
        assert (wallet.balance, wallet.escrow) == (Decimal("20000.00"), Decimal("0.00"))
        assert market.ledger_check().balanced

        # The job can be filled again afterwards
        selection = market.jobs.select_worker(job.id, application.id, CLIENT)
        assert selection.booking.payment_status == "held"


class TestRefundStatusGate:
    """Tests for refunds rechecking the booking status at write time."""

    def test_client_refund_loses_to_worker_completion(self, market, hire, monkeypatch):
        selection = hire()
        market.bookings.start_work(selection.booking.id, WORKER)
        original = market.bookings._require_client

        def read_then_worker_finishes(booking_id, client_id):
            booking = original(booking_id, client_id)
            market.bookings.mark_worker_completed(booking_id, WORKER)
            return booking

        monkeypatch.setattr(market.bookings, "_require_client", read_then_worker_finishes)
        with pytest.raises(InvalidStateError, match="worker_completed"):
            market.bookings.request_full_refund(selection.booking.id, CLIENT)

        booking = market.bookings.get_booking(selection.booking.id)
        assert (booking.status, booking.payment_status) == ("worker_completed", "held")
        assert market.wallets.get_wallet(CLIENT).escrow == Decimal("20000.00")

    def test_worker_cancel_loses_to_own_completion(self, market, hire, monkeypatch):
        selection = hire(now=utc_now() - timedelta(hours=30))
        market.bookings.start_work(selection.booking.id, WORKER)
        original = market.cancellation.can_cancel

        def check_then_complete(booking_id, worker_id, now=None):
            eligibility = original(booking_id, worker_id, now=now)
            market.bookings.mark_worker_completed(booking_id, WORKER)
            return eligibility

        monkeypatch.setattr(market.cancellation, "can_cancel", check_then_complete)
        with pytest.raises(InvalidStateError):
            market.cancellation.cancel_as_worker(selection.booking.id, WORKER)

        booking = market.bookings.get_booking(selection.booking.id)
        assert (booking.status, booking.payment_status) == ("worker_completed", "held")
        assert market.jobs.get_application(selection.application.id).status == "accepted"

    def test_approval_needs_pending_cancellation_at_write(self, market, hire):
        selection = hire()
        _finish(market, selection.booking.id)
        with pytest.raises(InvalidStateError):
            market.escrow.refund_escrow(
                selection.booking.id,
                "cancellation_approved",
                allowed_statuses={"cancellation_requested"},
            )
        assert market.bookings.get_booking(selection.booking.id).payment_status == "held"


class TestAcceptanceOrdering:
    """Tests for accept_selection when the booking has moved on."""

    def test_selection_restored_when_booking_moved(self, market, hire):
        selection = hire(accept=False)
        market.bookings.request_cancellation(selection.booking.id, CLIENT, "Plans changed")

        with pytest.raises(InvalidStateError, match="cancellation_requested"):
            market.jobs.accept_selection(selection.application.id, WORKER)

        application = market.jobs.get_application(selection.application.id)
        assert application.status == "selected"
        assert application.accepted_at is None
        assert market.bookings.get_booking(selection.booking.id).status == "cancellation_requested"

    def test_worker_can_still_decline_after_failed_accept(self, market, hire):
        selection = hire(accept=False)
        market.bookings.request_cancellation(selection.booking.id, CLIENT, "Plans changed")
        with pytest.raises(InvalidStateError):
            market.jobs.accept_selection(selection.application.id, WORKER)

        market.jobs.decline_selection(selection.application.id, WORKER)

        assert market.bookings.get_booking(selection.booking.id).payment_status == "refunded"
        assert market.jobs.get_job(selection.job.id).status == "open"


class TestInterruptedSettlement:
    """Tests for finishing releases and refunds whose ledger write failed."""

    def test_sweep_pays_worker_after_failed_release(self, market, hire, monkeypatch):
        selection = hire()
        _finish(market, selection.booking.id)
        _fail_once(monkeypatch, market.wallets, "release")

        with pytest.raises(ConnectionError):
            market.bookings.confirm_work_completion(selection.booking.id, CLIENT)

        stuck = market.bookings.get_booking(selection.booking.id)
        assert (stuck.status, stuck.payment_status, stuck.settled_at) == ("completed", "released", None)
        assert market.wallets.get_wallet(WORKER).balance == Decimal("0.00")
        assert [b.id for b in market.escrow.list_unsettled()] == [stuck.id]

        report = market.auto_release.run_sweep()

        assert report.settled == 1
        assert report.to_dict()["settled"] == 1
        assert market.wallets.get_wallet(WORKER).balance == Decimal("19000.00")
        assert market.bookings.get_booking(stuck.id).settled_at is not None
        assert market.jobs.get_job(selection.job.id).status == "completed"
        assert market.ledger_check().balanced
        assert market.auto_release.run_sweep().settled == 0

    def test_dry_run_leaves_unsettled_booking(self, market, hire, monkeypatch):
        selection = hire()
        _fail_once(monkeypatch, market.wallets, "release")
        with pytest.raises(ConnectionError):
            market.escrow.release_escrow(selection.booking.id, "test")

        report = market.auto_release.run_sweep(dry_run=True)

        assert report.settled == 0
        assert market.bookings.get_booking(selection.booking.id).settled_at is None

    def test_manual_release_finishes_settlement(self, market, hire, monkeypatch):
        selection = hire()
        _fail_once(monkeypatch, market.wallets, "release")
        with pytest.raises(ConnectionError):
            market.escrow.release_escrow(selection.booking.id, "test")

        entry = market.auto_release.trigger_manual_release(selection.booking.id)

        assert entry.action == "released"
        assert entry.metadata["already_settled"] is False
        assert market.wallets.get_wallet(WORKER).balance == Decimal("19000.00")

    def test_refund_retry_credits_client(self, market, hire, monkeypatch):
        selection = hire()
        _fail_once(monkeypatch, market.wallets, "refund")
        with pytest.raises(ConnectionError):
            market.bookings.request_full_refund(selection.booking.id, CLIENT)
        assert market.wallets.get_wallet(CLIENT).balance == Decimal("0.00")

        result = market.bookings.request_full_refund(selection.booking.id, CLIENT)

        assert not result.already_settled
        assert result.booking.settled_at is not None
        assert market.wallets.get_wallet(CLIENT).balance == Decimal("20000.00")
        assert market.jobs.get_job(selection.job.id).status == "open"

    def test_finish_settlement_requires_a_settlement(self, market, hire):
        selection = hire()
        with pytest.raises(InvalidStateError, match="no settlement"):
            market.escrow.finish_settlement(selection.booking.id)
