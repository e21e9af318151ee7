"""Tests for escrow release/refund and the booking workflow around them."""

from decimal import Decimal

import pytest

from errandwork.errors import InvalidStateError, UnauthorizedError

CLIENT = "client-1"
WORKER = "worker-1"
OTHER_WORKER = "worker-2"


def _finish(market, booking_id):
    market.bookings.start_work(booking_id, WORKER)
    return market.bookings.mark_worker_completed(booking_id, WORKER)


class TestRelease:
    """Tests for paying the worker."""

    def test_confirmation_completes_booking_and_job(self, market, hire):
        selection = hire()
        _finish(market, selection.booking.id)

        result = market.bookings.confirm_work_completion(selection.booking.id, CLIENT)

        assert not result.already_settled
        assert (result.booking.status, result.booking.payment_status) == ("completed", "released")
        assert market.jobs.get_job(selection.job.id).status == "completed"
        assert market.wallets.get_wallet(WORKER).balance == Decimal("19000.00")
        assert market.ledger_check().balanced

    def test_release_is_idempotent(self, market, hire):
        selection = hire()
        first = market.escrow.release_escrow(selection.booking.id, "test")
        second = market.escrow.release_escrow(selection.booking.id, "test")

        assert not first.already_settled
        assert second.already_settled
        assert market.wallets.get_wallet(WORKER).balance == Decimal("19000.00")
        assert market.wallets.get_wallet(CLIENT).escrow == Decimal("0.00")

    def test_refund_after_release_refused(self, market, hire):
        selection = hire()
        market.escrow.release_escrow(selection.booking.id, "test")
        with pytest.raises(InvalidStateError, match="already paid out"):
            market.escrow.refund_escrow(selection.booking.id, "test")

    def test_confirmed_booking_not_releasable(self, market, hire):
        selection = hire(accept=False)
        with pytest.raises(InvalidStateError):
            market.escrow.release_escrow(selection.booking.id, "test")

    def test_only_client_confirms(self, market, hire):
        selection = hire()
        _finish(market, selection.booking.id)
        with pytest.raises(UnauthorizedError):
            market.bookings.confirm_work_completion(selection.booking.id, WORKER)

    def test_transitions_are_audited(self, market, hire):
        selection = hire()
        _finish(market, selection.booking.id)
        market.bookings.confirm_work_completion(selection.booking.id, CLIENT)

        history = market.transitions.get_transitions("booking", selection.booking.id)
        assert [(t.from_status, t.to_status) for t in history] == [
            (None, "confirmed"),
            ("confirmed", "accepted"),
            ("accepted", "in_progress"),
            ("in_progress", "worker_completed"),
            ("worker_completed", "completed"),
        ]


class TestRefunds:
    """Tests for returning money to the client."""

    def test_client_refund_unpicks_worker(self, market, hire):
        selection = hire()
        result = market.bookings.request_full_refund(selection.booking.id, CLIENT, "Changed my mind")

        assert result.booking.payment_status == "refunded"
        assert market.jobs.get_application(selection.application.id).status == "unpicked"
        assert market.jobs.get_job(selection.job.id).status == "open"
        assert market.wallets.get_wallet(CLIENT).balance == Decimal("20000.00")

    def test_refund_twice_credits_once(self, market, hire):
        selection = hire()
        market.bookings.request_full_refund(selection.booking.id, CLIENT)
        again = market.bookings.request_full_refund(selection.booking.id, CLIENT)

        assert again.already_settled
        assert market.wallets.get_wallet(CLIENT).balance == Decimal("20000.00")

    def test_no_refund_after_worker_completed(self, market, hire):
        selection = hire()
        _finish(market, selection.booking.id)
        with pytest.raises(InvalidStateError):
            market.bookings.request_full_refund(selection.booking.id, CLIENT)

    def test_mutual_cancellation_requested_by_worker(self, market, hire):
        selection = hire()
        market.bookings.request_cancellation(selection.booking.id, WORKER, "Family emergency")
        market.bookings.approve_cancellation(selection.booking.id, CLIENT)

        assert market.jobs.get_application(selection.application.id).status == "declined"
        assert market.bookings.get_booking(selection.booking.id).status == "cancelled"

    def test_requester_cannot_approve(self, market, hire):
        selection = hire()
        market.bookings.request_cancellation(selection.booking.id, CLIENT, "Plans changed")
        with pytest.raises(UnauthorizedError):
            market.bookings.approve_cancellation(selection.booking.id, CLIENT)

    def test_cancellation_needs_reason(self, market, hire):
        selection = hire()
        with pytest.raises(ValueError):
            market.bookings.request_cancellation(selection.booking.id, CLIENT, " ")


class TestDisputes:
    """Tests for dispute freeze and resolution."""

    def test_dispute_freezes_payment(self, market, hire):
        selection = hire()
        market.bookings.raise_dispute(selection.booking.id, CLIENT, "Worker never arrived")

        with pytest.raises(InvalidStateError, match="frozen"):
            market.escrow.release_escrow(selection.booking.id, "test")
        with pytest.raises(InvalidStateError, match="frozen"):
            market.escrow.refund_escrow(selection.booking.id, "test")

    def test_refund_resolution_reopens_job(self, market, hire):
        selection = hire()
        market.bookings.raise_dispute(selection.booking.id, CLIENT, "Worker never arrived")

        result = market.bookings.resolve_dispute(selection.booking.id, "refund", "admin-1", note="Confirmed")

        assert result.booking.payment_status == "refunded"
        assert market.jobs.get_application(selection.application.id).status == "declined"
        assert market.jobs.get_job(selection.job.id).status == "open"
        assert market.wallets.get_wallet(CLIENT).balance == Decimal("20000.00")

    def test_invalid_resolution(self, market, hire):
        selection = hire()
        market.bookings.raise_dispute(selection.booking.id, CLIENT, "Bad work")
        with pytest.raises(ValueError, match="Invalid resolution"):
            market.bookings.resolve_dispute(selection.booking.id, "split", "admin-1")

    def test_resolve_requires_dispute(self, market, hire):
        selection = hire()
        with pytest.raises(InvalidStateError, match="not under dispute"):
            market.bookings.resolve_dispute(selection.booking.id, "release", "admin-1")


class TestDirectBookings:
    """Tests for bookings made without a job posting."""

    def test_fund_and_accept(self, market, fund):
        fund(CLIENT, "8000")
        booking = market.bookings.create_direct_booking(CLIENT, OTHER_WORKER, "8000")
        assert (booking.status, booking.payment_status) == ("pending", "pending")

        funded = market.bookings.fund_booking(booking.id, CLIENT)
        assert (funded.status, funded.payment_status) == ("confirmed", "held")
        assert market.wallets.get_wallet(CLIENT).escrow == Decimal("8000.00")

        accepted = market.bookings.accept_booking(booking.id, OTHER_WORKER)
        assert accepted.status == "accepted"

    def test_unfunded_refund_just_cancels(self, market):
        booking = market.bookings.create_direct_booking(CLIENT, OTHER_WORKER, "8000")
        result = market.escrow.refund_escrow(booking.id, "never_funded")

        assert result.booking.status == "cancelled"
        assert result.booking.payment_status == "pending"
        assert result.refund is None
