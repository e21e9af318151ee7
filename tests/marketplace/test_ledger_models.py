"""Tests for wallet, booking, job and rule models."""

from decimal import Decimal

import pytest

from errandwork.auto_release.models import AutoReleaseRule, default_rules
from errandwork.bookings.models import Booking, BookingStatus, check_status_consistency
from errandwork.jobs.models import ApplicationStatus, Job, JobApplication, JobStatus
from errandwork.types import parse_datetime, to_amount
from errandwork.wallet.models import TransactionType, Wallet, WalletTransaction


class TestAmounts:
    """Tests for money coercion."""

    def test_float_goes_through_str(self):
        assert to_amount(0.1) == Decimal("0.10")

    def test_rounds_half_up(self):
        assert to_amount("10.005") == Decimal("10.01")

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", None])
    def test_rejects_non_amounts(self, value):
        with pytest.raises(ValueError):
            to_amount(value)

    def test_naive_datetime_assumed_utc(self):
        assert parse_datetime("2026-01-01T00:00:00").tzinfo is not None


class TestWallet:
    """Tests for wallet counters."""

    def test_hold_moves_balance_into_escrow(self):
        wallet = Wallet(user_id="u1", balance="50000")
        tx = WalletTransaction(id="hold_b1", user_id="u1", type=TransactionType.BOOKING_HOLD, amount="20000")

        held = wallet.apply(tx)

        assert held.balance == Decimal("30000.00")
        assert held.escrow == Decimal("20000.00")
        # apply never mutates the original
        assert wallet.balance == Decimal("50000.00")

    def test_overdraw_rejected(self):
        wallet = Wallet(user_id="u1", balance="100")
        tx = WalletTransaction(id="hold_b1", user_id="u1", type="booking_hold", amount="100.01")
        with pytest.raises(ValueError, match="Balance would go negative"):
            wallet.apply(tx)

    def test_negative_counters_rejected(self):
        with pytest.raises(ValueError):
            Wallet(user_id="u1", escrow="-1")

    def test_replay_tracks_lifetime_totals(self):
        client_entries = [
            WalletTransaction(id="t1", user_id="c", type="topup", amount="500"),
            WalletTransaction(id="hold_b", user_id="c", type="booking_hold", amount="200"),
            WalletTransaction(id="release_b", user_id="c", type="booking_release", amount="200"),
        ]
        wallet = Wallet.replay("c", client_entries)
        assert wallet.balance == Decimal("300.00")
        assert wallet.escrow == Decimal("0.00")
        assert wallet.total_spent == Decimal("200.00")

    def test_transaction_needs_positive_amount(self):
        with pytest.raises(ValueError, match="positive"):
            WalletTransaction(id="t1", user_id="u1", type="topup", amount="0")

    def test_unknown_transaction_type(self):
        with pytest.raises(ValueError, match="Invalid transaction type"):
            WalletTransaction(id="t1", user_id="u1", type="gift", amount="1")


class TestBookingConsistency:
    """Tests for the status / payment_status pairing."""

    @pytest.mark.parametrize(
        "status,payment_status",
        [
            ("completed", "held"),
            ("cancelled", "released"),
            ("pending", "held"),
            ("accepted", "refunded"),
            ("disputed", "pending"),
        ],
    )
    def test_illegal_pairs(self, status, payment_status):
        assert check_status_consistency(status, payment_status) is not None
        with pytest.raises(ValueError, match="Inconsistent booking state"):
            Booking(
                id="b1",
                client_id="c",
                worker_id="w",
                budget_amount="100",
                status=status,
                payment_status=payment_status,
            )

    def test_cancelled_unfunded_is_legal(self):
        booking = Booking(
            id="b1", client_id="c", worker_id="w", budget_amount="100", status="cancelled"
        )
        assert booking.is_terminal
        assert not booking.is_settled

    def test_client_cannot_book_themselves(self):
        with pytest.raises(ValueError, match="different users"):
            Booking(id="b1", client_id="c", worker_id="c", budget_amount="100")

    def test_completed_only_after_work(self):
        booking = Booking(
            id="b1",
            client_id="c",
            worker_id="w",
            budget_amount="100",
            status="worker_completed",
            payment_status="held",
        )
        assert booking.can_transition_to(BookingStatus.COMPLETED)
        assert not booking.can_transition_to(BookingStatus.PENDING)

    def test_round_trip_through_dict(self):
        booking = Booking(
            id="b1", client_id="c", worker_id="w", budget_amount="20000", status="confirmed", payment_status="held"
        )
        restored = Booking.from_dict(booking.to_dict())
        assert restored.budget_amount == Decimal("20000.00")
        assert restored.status == "confirmed"


class TestJobModels:
    """Tests for jobs and applications."""

    def test_fixed_budget_when_min_missing(self):
        job = Job(id="j1", client_id="c", title="Clean flat", budget_max="15000")
        assert job.is_fixed_budget
        assert job.hold_amount == Decimal("15000.00")

    def test_min_above_max_rejected(self):
        with pytest.raises(ValueError, match="Minimum budget"):
            Job(id="j1", client_id="c", title="Clean flat", budget_max="100", budget_min="200")

    def test_blank_title_rejected(self):
        with pytest.raises(ValueError, match="Title is required"):
            Job(id="j1", client_id="c", title="  ", budget_max="100")

    def test_terminal_jobs_do_not_transition(self):
        job = Job(id="j1", client_id="c", title="Clean flat", budget_max="100", status="expired")
        assert job.is_terminal
        assert not job.can_transition_to(JobStatus.OPEN)

    def test_withdrawn_application_is_not_active(self):
        withdrawn = JobApplication(id="a1", job_id="j1", worker_id="w", status="withdrawn")
        declined = JobApplication(id="a2", job_id="j1", worker_id="w", status="declined")
        assert not withdrawn.is_active
        assert declined.is_active

    def test_accepted_worker_may_later_decline(self):
        application = JobApplication(id="a1", job_id="j1", worker_id="w", status="accepted")
        assert application.can_transition_to(ApplicationStatus.DECLINED)
        assert not application.can_transition_to(ApplicationStatus.UNPICKED)

    def test_conflicting_terminal_timestamps(self):
        stamp = parse_datetime("2026-01-01T00:00:00Z")
        with pytest.raises(ValueError, match="Conflicting terminal timestamps"):
            JobApplication(id="a1", job_id="j1", worker_id="w", declined_at=stamp, withdrawn_at=stamp)


class TestRuleModels:
    """Tests for auto-release rule validation."""

    def test_defaults_are_valid_and_ordered(self):
        rules = sorted(default_rules(), key=lambda r: r.sort_key)
        assert [r.id for r in rules] == ["client_confirmed", "standard_completion", "emergency_release"]

    def test_time_based_needs_a_duration(self):
        with pytest.raises(ValueError, match="time_based rule needs"):
            AutoReleaseRule(id="r", name="r", trigger="time_based", conditions={})

    def test_status_based_needs_status(self):
        with pytest.raises(ValueError, match="required_status"):
            AutoReleaseRule(id="r", name="r", trigger="status_based", conditions={"auto_release_after_hours": 1})

    def test_hybrid_on_other_status_needs_a_cap(self):
        with pytest.raises(ValueError, match="needs max_hold_duration_hours"):
            AutoReleaseRule(
                id="r",
                name="r",
                trigger="hybrid",
                conditions={"required_status": "in_progress", "auto_release_after_hours": 24},
            )
        capped = AutoReleaseRule(
            id="r",
            name="r",
            trigger="hybrid",
            conditions={"required_status": "in_progress", "max_hold_duration_hours": 72},
        )
        assert capped.caps_hold_time

    def test_unknown_trigger(self):
        with pytest.raises(ValueError, match="Invalid trigger"):
            AutoReleaseRule(id="r", name="r", trigger="lunar", conditions={"max_hold_duration_hours": 1})

    def test_caps_hold_time(self):
        hybrid_capped = AutoReleaseRule(
            id="r", name="r", trigger="hybrid", conditions={"max_hold_duration_hours": 72}
        )
        status_only = AutoReleaseRule(
            id="s", name="s", trigger="status_based", conditions={"required_status": "worker_completed"}
        )
        assert hybrid_capped.caps_hold_time
        assert not status_only.caps_hold_time
