"""
Auto-release rule engine.

Run by an external scheduler (cron, the CLI, the maintenance endpoint); the
engine never schedules itself. Each sweep walks the held bookings, tries
the enabled rules in (priority, id) order and releases on the first match.
A failure on one booking is logged and the sweep moves on.

Before evaluating rules, a sweep finishes any release or refund whose
booking flipped but whose ledger entries were not written.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from errandwork.auto_release.models import (
    AutoReleaseLog,
    AutoReleaseRule,
    ReleaseAction,
    RuleTrigger,
    TriggeredBy,
    default_rules,
)
from errandwork.auto_release.storage import AutoReleaseStorage
from errandwork.bookings.models import STATUS_TIMESTAMPS, Booking, BookingStatus, PaymentStatus
from errandwork.bookings.storage import BookingStorage
from errandwork.config import MarketplaceConfig
from errandwork.errors import NotFoundError
from errandwork.escrow.service import EscrowService
from errandwork.types import format_datetime, hours_between, utc_now

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system:auto_release"

# Bookings that only rules capping the hold time may release
STUCK_STATUSES = (BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS)


@dataclass
class RuleDecision:
    eligible: bool
    reason: str


@dataclass
class SweepReport:
    """Outcome of one sweep."""

    triggered_by: str
    dry_run: bool = False
    evaluated: int = 0
    released: int = 0
    failed: int = 0
    skipped: int = 0
    settled: int = 0  # interrupted settlements finished by this sweep
    actions: List[AutoReleaseLog] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triggered_by": self.triggered_by,
            "dry_run": self.dry_run,
            "evaluated": self.evaluated,
            "released": self.released,
            "failed": self.failed,
            "skipped": self.skipped,
            "settled": self.settled,
            "actions": [a.to_dict() for a in self.actions],
            "started_at": format_datetime(self.started_at),
            "finished_at": format_datetime(self.finished_at),
        }


# === Evaluators ===


def _hours_held(booking: Booking, now: datetime) -> Optional[float]:
    start = booking.held_at or booking.confirmed_at
    return hours_between(start, now) if start else None


def _max_hold_reached(rule: AutoReleaseRule, booking: Booking, now: datetime) -> Optional[RuleDecision]:
    limit = rule.conditions.max_hold_duration_hours
    if limit is None:
        return None
    held = _hours_held(booking, now)
    if held is not None and held >= limit:
        return RuleDecision(True, f"Maximum hold duration exceeded ({held:.1f}h >= {limit:g}h)")
    return None


def _since_completion(rule: AutoReleaseRule, booking: Booking, now: datetime) -> RuleDecision:
    after = rule.conditions.auto_release_after_hours or 0
    if booking.status != BookingStatus.WORKER_COMPLETED.value or booking.worker_completed_at is None:
        return RuleDecision(False, "Job not yet marked as completed")
    elapsed = hours_between(booking.worker_completed_at, now)
    if elapsed < after:
        return RuleDecision(False, f"{after - elapsed:.1f} hours remaining after completion")
    return RuleDecision(
        True, f"{elapsed:.1f} hours elapsed since completion (>= {after:g}h required)"
    )


def evaluate_time_based(rule: AutoReleaseRule, booking: Booking, now: datetime) -> RuleDecision:
    forced = _max_hold_reached(rule, booking, now)
    if forced:
        return forced
    if rule.conditions.auto_release_after_hours is not None:
        return _since_completion(rule, booking, now)
    return RuleDecision(False, "Maximum hold duration not reached")


def evaluate_status_based(rule: AutoReleaseRule, booking: Booking, now: datetime) -> RuleDecision:
    c = rule.conditions
    if c.require_client_confirmation:
        return RuleDecision(False, "Client confirmation required but not received")
    if booking.status != c.required_status:
        return RuleDecision(False, f"Booking status is {booking.status}, required: {c.required_status}")
    if c.auto_release_after_hours:
        entered = getattr(booking, STATUS_TIMESTAMPS.get(booking.status, ""), None)
        if entered is None:
            return RuleDecision(False, f"No timestamp for status {booking.status}")
        elapsed = hours_between(entered, now)
        if elapsed < c.auto_release_after_hours:
            return RuleDecision(
                False, f"{c.auto_release_after_hours - elapsed:.1f} hours remaining in {booking.status}"
            )
    return RuleDecision(True, f"Booking status is {booking.status}")


def evaluate_hybrid(rule: AutoReleaseRule, booking: Booking, now: datetime) -> RuleDecision:
    forced = _max_hold_reached(rule, booking, now)
    if forced:
        return forced
    c = rule.conditions
    if c.required_status is None:
        return RuleDecision(False, "Maximum hold duration not reached")
    if booking.status != c.required_status:
        return RuleDecision(False, f"Booking status is {booking.status}, required: {c.required_status}")
    return _since_completion(rule, booking, now)


EVALUATORS: Dict[str, Callable[[AutoReleaseRule, Booking, datetime], RuleDecision]] = {
    RuleTrigger.TIME_BASED.value: evaluate_time_based,
    RuleTrigger.STATUS_BASED.value: evaluate_status_based,
    RuleTrigger.HYBRID.value: evaluate_hybrid,
}


class AutoReleaseService:
    """Evaluates auto-release rules against held bookings."""

    def __init__(
        self,
        storage: AutoReleaseStorage,
        bookings: BookingStorage,
        escrow: EscrowService,
        config: Optional[MarketplaceConfig] = None,
    ):
        self.storage = storage
        self.bookings = bookings
        self.escrow = escrow
        self.config = config or MarketplaceConfig()

    # === Rules ===

    def ensure_default_rules(self) -> List[AutoReleaseRule]:
        """Create any missing default rules. Returns the ones created."""
        created = []
        for rule in default_rules():
            if self.storage.get_rule(rule.id) is None:
                self.storage.save_rule(rule)
                created.append(rule)
                logger.info(f"Created auto-release rule: {rule.name}")
        return created

    def list_rules(self, enabled_only: bool = False) -> List[AutoReleaseRule]:
        return self.storage.list_rules(enabled=True if enabled_only else None)

    def get_rule(self, rule_id: str) -> AutoReleaseRule:
        rule = self.storage.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Auto-release rule {rule_id} not found")
        return rule

    def save_rule(self, rule: AutoReleaseRule) -> AutoReleaseRule:
        self.storage.save_rule(rule)
        return rule

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> AutoReleaseRule:
        rule = self.get_rule(rule_id)
        rule.enabled = enabled
        self.storage.save_rule(rule)
        logger.info(f"Auto-release rule {'enabled' if enabled else 'disabled'} | rule={rule_id}")
        return rule

    def list_logs(self, booking_id: Optional[str] = None, limit: int = 50) -> List[AutoReleaseLog]:
        return self.storage.list_logs(booking_id=booking_id, limit=limit)

    # === Sweep ===

    def evaluate(self, booking: Booking, rules: List[AutoReleaseRule], now: datetime):
        """First matching rule and its decision, or (None, None)."""
        worker_done = booking.status == BookingStatus.WORKER_COMPLETED.value
        for rule in rules:
            if not worker_done and not rule.caps_hold_time:
                continue
            decision = EVALUATORS[rule.trigger](rule, booking, now)
            if decision.eligible:
                return rule, decision
        return None, None

    def run_sweep(
        self,
        triggered_by: str = TriggeredBy.CRON.value,
        now: Optional[datetime] = None,
        dry_run: bool = False,
    ) -> SweepReport:
        """Release every held booking that an enabled rule says is due."""
        now = now or utc_now()
        report = SweepReport(triggered_by=TriggeredBy(triggered_by).value, dry_run=dry_run, started_at=utc_now())
        if not dry_run:
            self._finish_settlements(report)
        rules = self.storage.list_rules(enabled=True)
        candidates = self._candidates(rules)
        logger.info(
            f"Auto-release sweep | candidates={len(candidates)} | rules={len(rules)} | dry_run={dry_run}"
        )

        for booking in candidates:
            report.evaluated += 1
            try:
                rule, decision = self.evaluate(booking, rules, now)
            except Exception as e:
                logger.exception(f"Rule evaluation failed | booking={booking.id}")
                report.failed += 1
                entry = self._log(booking, None, ReleaseAction.FAILED, "Evaluation error", report, error=str(e))
                report.actions.append(entry if dry_run else self._store(entry))
                continue

            if rule is None:
                report.skipped += 1
                continue

            if dry_run:
                report.actions.append(
                    self._log(booking, rule, ReleaseAction.SCHEDULED, decision.reason, report, scheduled_at=now)
                )
                continue

            entry = self._execute(booking, rule, decision.reason, report)
            if entry is None:
                report.skipped += 1
            elif entry.action == ReleaseAction.RELEASED.value:
                report.released += 1
                report.actions.append(entry)
            else:
                report.failed += 1
                report.actions.append(entry)

        report.finished_at = utc_now()
        logger.info(
            f"Auto-release sweep done | evaluated={report.evaluated} | released={report.released} | "
            f"failed={report.failed} | skipped={report.skipped} | settled={report.settled}"
        )
        return report

    def trigger_manual_release(
        self,
        booking_id: str,
        rule_id: Optional[str] = None,
        actor_id: str = "admin",
    ) -> AutoReleaseLog:
        """Release one booking now, outside the rules' timing (admin use)."""
        booking = self.bookings.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        rule = self.get_rule(rule_id) if rule_id else None

        report = SweepReport(triggered_by=TriggeredBy.MANUAL.value)
        try:
            result = self.escrow.release_escrow(
                booking_id, f"manual_release:{rule_id or 'admin'}", actor_id=actor_id
            )
        except Exception as e:
            self._store(
                self._log(booking, rule, ReleaseAction.FAILED, "Manual admin trigger", report, error=str(e))
            )
            raise
        return self._store(
            self._log(
                result.booking,
                rule,
                ReleaseAction.RELEASED,
                "Manual admin trigger",
                report,
                already_settled=result.already_settled,
                actor_id=actor_id,
            )
        )

    # === Helpers ===

    def _finish_settlements(self, report: SweepReport) -> None:
        """Write the ledger side of releases and refunds that stopped short of it."""
        for booking in self.escrow.list_unsettled(limit=self.config.sweep_batch_limit):
            try:
                result = self.escrow.finish_settlement(booking.id)
            except Exception as e:
                logger.error(f"Settlement retry failed | booking={booking.id} | error={e}")
                report.failed += 1
                continue
            if not result.already_settled:
                report.settled += 1
                logger.info(f"Settlement finished | booking={booking.id} | payment={booking.payment_status}")

    def _candidates(self, rules: List[AutoReleaseRule]) -> List[Booking]:
        limit = self.config.sweep_batch_limit
        held = PaymentStatus.HELD
        bookings = self.bookings.list_bookings(
            status=BookingStatus.WORKER_COMPLETED, payment_status=held, limit=limit
        )
        if any(rule.caps_hold_time for rule in rules):
            for status in STUCK_STATUSES:
                bookings.extend(self.bookings.list_bookings(status=status, payment_status=held, limit=limit))
        return bookings[:limit]

    def _execute(
        self, booking: Booking, rule: AutoReleaseRule, reason: str, report: SweepReport
    ) -> Optional[AutoReleaseLog]:
        try:
            result = self.escrow.release_escrow(
                booking.id, f"auto_release:{rule.id}", actor_id=SYSTEM_ACTOR
            )
        except Exception as e:
            logger.error(f"Auto-release failed | booking={booking.id} | rule={rule.id} | error={e}")
            return self._store(self._log(booking, rule, ReleaseAction.FAILED, reason, report, error=str(e)))

        if result.already_settled:
            # Released by someone else between listing and now
            return None
        logger.info(f"Auto-released | booking={booking.id} | rule={rule.id} | {reason}")
        return self._store(self._log(booking, rule, ReleaseAction.RELEASED, reason, report))

    def _log(
        self,
        booking: Booking,
        rule: Optional[AutoReleaseRule],
        action: ReleaseAction,
        reason: str,
        report: SweepReport,
        error: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
        **extra,
    ) -> AutoReleaseLog:
        metadata = {
            "rule_name": rule.name if rule else None,
            "booking_status": booking.status,
            "payment_status": booking.payment_status,
            "triggered_by": report.triggered_by,
        }
        metadata.update(extra)
        return AutoReleaseLog(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            rule_id=rule.id if rule else "none",
            action=action,
            reason=reason,
            error=error,
            metadata=metadata,
            scheduled_at=scheduled_at,
            executed_at=None if action == ReleaseAction.SCHEDULED else utc_now(),
        )

    def _store(self, entry: AutoReleaseLog) -> AutoReleaseLog:
        try:
            self.storage.save_log(entry)
        except Exception as e:
            # Release is already committed; only the log line is lost
            logger.error(f"Failed to store auto-release log | booking={entry.booking_id} | error={e}")
        return entry
