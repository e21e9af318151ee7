"""Tests for the Marketplace facade, its Result envelope and the ambient config."""

import logging
from datetime import date
from decimal import Decimal

import pytest

from errandwork import Marketplace, MarketplaceConfig, Result
from errandwork.errors import InsufficientFundsError, NotFoundError
from errandwork.logging_config import get_log_dir, log_money_event, setup_errandwork_logging
from errandwork.notifications import NotificationDispatcher, NotificationKind

CLIENT = "client-1"
WORKER = "worker-1"


class ExplodingNotifier:
    def notify(self, user_id, kind, payload):
        raise ConnectionError("sms gateway down")


class TestResultEnvelope:
    def test_ok_envelope(self):
        result = Result.ok({"amount": Decimal("12.50")}, message="Done")
        assert result.to_dict() == {"success": True, "data": {"amount": "12.50"}, "message": "Done"}

    def test_fail_envelope_carries_code_and_details(self):
        result = Result.fail(InsufficientFundsError(Decimal("20000.00"), Decimal("5000.00")))
        out = result.to_dict()

        assert out["success"] is False
        assert out["reason"] == "insufficient_funds"
        assert out["details"] == {"amount_needed": "20000.00", "available": "5000.00"}

    def test_fail_without_details_omits_key(self):
        out = Result.fail(NotFoundError("Job x not found")).to_dict()
        assert out == {"success": False, "message": "Job x not found", "reason": "not_found"}


class TestFacadeOperations:
    def test_create_job_returns_data(self, market):
        result = market.create_job(CLIENT, "Fix sink", "15000", description="Kitchen")

        assert result.success
        assert result.data["status"] == "open"
        assert result.data["budget_max"] == "15000.00"

    def test_value_error_maps_to_invalid_input(self, market):
        result = market.create_job(CLIENT, "   ", "15000")
        assert (result.success, result.reason) == (False, "invalid_input")

    def test_selection_without_funds_reports_amounts(self, market):
        job = market.create_job(CLIENT, "Fix sink", "15000").data
        application = market.apply_to_job(job["id"], WORKER, "I can help").data

        result = market.select_worker(job["id"], application["id"], CLIENT)

        assert result.reason == "insufficient_funds"
        assert result.details["amount_needed"] == "15000.00"
        assert market.get_job(job["id"]).data["status"] == "open"

    def test_happy_path_through_facade(self, market, fund):
        fund(CLIENT, "15000")
        job = market.create_job(CLIENT, "Fix sink", "15000").data
        application = market.apply_to_job(job["id"], WORKER).data
        selected = market.select_worker(job["id"], application["id"], CLIENT)
        booking_id = selected.data["booking"]["id"]

        assert market.accept_selection(application["id"], WORKER).success
        assert market.start_work(booking_id, WORKER).success
        assert market.mark_worker_completed(booking_id, WORKER).success
        released = market.confirm_work_completion(booking_id, CLIENT)

        assert released.message == "Payment released"
        assert market.get_wallet(WORKER).data["balance"] == "14250.00"
        assert market.ledger_check().balanced

    def test_top_up_without_provider(self, market):
        result = market.top_up(CLIENT, "ref-1")
        assert result.reason == "provider_error"

    def test_initialize_without_provider(self, market):
        result = market.initialize_top_up(CLIENT, "a@example.com", "5000", "https://app.test/cb")
        assert result.reason == "provider_error"

    def test_list_rules_in_order(self, market):
        rules = market.list_rules().data
        assert [r["id"] for r in rules] == ["client_confirmed", "standard_completion", "emergency_release"]

    def test_unknown_rule(self, market):
        assert market.set_rule_enabled("nope", False).reason == "not_found"


class TestNotifications:
    def test_dispatcher_absorbs_failures(self):
        dispatcher = NotificationDispatcher(ExplodingNotifier())
        assert dispatcher.send(CLIENT, NotificationKind.WALLET_FUNDED, amount="10") is False

    def test_dispatcher_skips_missing_user(self, notifier):
        dispatcher = NotificationDispatcher(notifier)
        assert dispatcher.send(None, NotificationKind.WALLET_FUNDED) is False
        assert notifier.sent == []

    def test_money_moves_when_notifier_fails(self):
        market = Marketplace(notifier=ExplodingNotifier())
        market.wallets.top_up(CLIENT, Decimal("15000"), "seed-1")
        job = market.create_job(CLIENT, "Fix sink", "15000").data
        application = market.apply_to_job(job["id"], WORKER).data

        result = market.select_worker(job["id"], application["id"], CLIENT)

        assert result.success
        assert market.wallets.get_wallet(CLIENT).escrow == Decimal("15000.00")

    def test_selection_notifies_worker(self, market, fund, notifier):
        fund(CLIENT, "15000")
        job = market.create_job(CLIENT, "Fix sink", "15000").data
        application = market.apply_to_job(job["id"], WORKER).data
        market.select_worker(job["id"], application["id"], CLIENT)

        assert "application_received" in notifier.kinds_for(CLIENT)
        assert "worker_selected" in notifier.kinds_for(WORKER)


class TestConfig:
    def test_defaults(self):
        config = MarketplaceConfig()
        assert config.acceptance_window_hours == 1.0
        assert config.worker_cancel_wait_hours == 24.0
        assert config.default_job_expiry_days == 30
        assert config.platform_fee_percent == 5.0

    @pytest.mark.parametrize(
        "field,value",
        [
            ("acceptance_window_hours", 0),
            ("worker_cancel_wait_hours", -1),
            ("default_job_expiry_days", 0),
            ("wallet_cas_retries", 0),
            ("sweep_batch_limit", 0),
            ("platform_fee_percent", 100),
            ("platform_fee_percent", -1),
            ("platform_account_id", ""),
        ],
    )
    def test_rejects_bad_values(self, field, value):
        with pytest.raises(ValueError):
            MarketplaceConfig(**{field: value})

    @pytest.mark.parametrize(
        "percent,amount,fee",
        [
            (5.0, "20000", "1000.00"),
            (5.0, "333.33", "16.67"),
            (0, "20000", "0.00"),
            (99.9, "0.01", "0.00"),
        ],
    )
    def test_platform_fee(self, percent, amount, fee):
        config = MarketplaceConfig(platform_fee_percent=percent)
        assert config.platform_fee(amount) == Decimal(fee)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ERRANDWORK_ACCEPTANCE_WINDOW_HOURS", "2.5")
        monkeypatch.setenv("ERRANDWORK_SWEEP_BATCH_LIMIT", "50")
        monkeypatch.setenv("ERRANDWORK_CURRENCY", "")

        config = MarketplaceConfig.from_env()

        assert config.acceptance_window_hours == 2.5
        assert config.sweep_batch_limit == 50
        assert config.currency == "NGN"

    def test_custom_window_changes_accept_by(self):
        market = Marketplace(config=MarketplaceConfig(acceptance_window_hours=3))
        market.wallets.top_up(CLIENT, Decimal("100"), "seed-1")
        job = market.jobs.create_job(CLIENT, "Walk dog", Decimal("100"))
        application = market.jobs.apply(job.id, WORKER)

        selection = market.jobs.select_worker(job.id, application.id, CLIENT)

        window = selection.accept_by - selection.application.selected_at
        assert window.total_seconds() == 3 * 3600


class TestLogging:
    def test_setup_creates_dated_file_once(self):
        logger = setup_errandwork_logging("INFO")
        try:
            setup_errandwork_logging("INFO")
            expected = get_log_dir() / f"local-{date.today().isoformat()}.log"
            file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
            assert expected.exists()
            assert len([h for h in file_handlers if h.baseFilename == str(expected)]) == 1
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()

    def test_money_event_line(self):
        log_money_event("hold", "client=c | amount=10.00", "booking-1")
        path = get_log_dir() / f"money-events-{date.today().isoformat()}.log"
        assert "hold | booking=booking-1 | client=c | amount=10.00" in path.read_text()

    def test_release_is_logged_as_money_event(self, market, hire):
        selection = hire()
        market.escrow.release_escrow(selection.booking.id, "test release")

        path = get_log_dir() / f"money-events-{date.today().isoformat()}.log"
        text = path.read_text()
        assert f"hold | booking={selection.booking.id}" in text
        assert f"release | booking={selection.booking.id}" in text
