"""
Auto-release data models.

A rule is a tagged variant: ``trigger`` names the evaluator and
``conditions`` carries the parameters that evaluator reads. Logs are
append-only records of what a sweep (or an admin) did to a booking.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from errandwork.bookings.models import BookingStatus
from errandwork.types import format_datetime, parse_datetime, utc_now


class RuleTrigger(str, Enum):
    TIME_BASED = "time_based"
    STATUS_BASED = "status_based"
    HYBRID = "hybrid"


class ReleaseAction(str, Enum):
    RELEASED = "released"
    FAILED = "failed"
    SCHEDULED = "scheduled"  # dry-run only, never persisted


class TriggeredBy(str, Enum):
    CRON = "cron"
    MANUAL = "manual"
    STATUS_CHANGE = "status_change"


@dataclass
class RuleConditions:
    """Parameters for a rule's evaluator.

    Attributes:
        auto_release_after_hours: Hours after the worker marked the work
            done (0 means the next sweep)
        max_hold_duration_hours: Hours since funds were held after which
            the money is released regardless of status
        required_status: Booking status the rule applies to
        require_client_confirmation: Rule waits for the client; the client's
            own confirmation releases directly, so such a rule never fires
    """

    auto_release_after_hours: Optional[float] = None
    max_hold_duration_hours: Optional[float] = None
    required_status: Optional[str] = None
    require_client_confirmation: bool = False

    def __post_init__(self):
        for name in ("auto_release_after_hours", "max_hold_duration_hours"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative")
        if isinstance(self.required_status, BookingStatus):
            self.required_status = self.required_status.value
        if self.required_status is not None and self.required_status not in {
            s.value for s in BookingStatus
        }:
            raise ValueError(f"Invalid required_status: {self.required_status}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auto_release_after_hours": self.auto_release_after_hours,
            "max_hold_duration_hours": self.max_hold_duration_hours,
            "required_status": self.required_status,
            "require_client_confirmation": self.require_client_confirmation,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RuleConditions":
        data = data or {}
        return cls(
            auto_release_after_hours=data.get("auto_release_after_hours"),
            max_hold_duration_hours=data.get("max_hold_duration_hours"),
            required_status=data.get("required_status"),
            require_client_confirmation=bool(data.get("require_client_confirmation", False)),
        )


@dataclass
class AutoReleaseRule:
    """A configured auto-release rule. Lower ``priority`` is evaluated first."""

    id: str
    name: str
    trigger: str
    conditions: RuleConditions = field(default_factory=RuleConditions)
    enabled: bool = True
    priority: int = 100
    description: str = ""
    created_by: str = "system"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.trigger, RuleTrigger):
            self.trigger = self.trigger.value
        if self.trigger not in {t.value for t in RuleTrigger}:
            raise ValueError(f"Invalid trigger: {self.trigger}")
        if isinstance(self.conditions, dict):
            self.conditions = RuleConditions.from_dict(self.conditions)

        c = self.conditions
        if self.trigger == RuleTrigger.TIME_BASED.value:
            if c.auto_release_after_hours is None and c.max_hold_duration_hours is None:
                raise ValueError("time_based rule needs auto_release_after_hours or max_hold_duration_hours")
        elif self.trigger == RuleTrigger.STATUS_BASED.value:
            if c.required_status is None:
                raise ValueError("status_based rule needs required_status")
        elif c.required_status is None and c.max_hold_duration_hours is None:
            raise ValueError("hybrid rule needs required_status or max_hold_duration_hours")
        elif (
            c.required_status not in (None, BookingStatus.WORKER_COMPLETED.value)
            and c.max_hold_duration_hours is None
        ):
            # The completion timer only runs from worker_completed
            raise ValueError(
                "hybrid rule with required_status other than worker_completed "
                "needs max_hold_duration_hours"
            )

        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def sort_key(self):
        return (self.priority, self.id)

    @property
    def caps_hold_time(self) -> bool:
        """Rule can release bookings that never reached worker_completed."""
        return (
            self.trigger == RuleTrigger.TIME_BASED.value
            or self.conditions.max_hold_duration_hours is not None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "trigger": self.trigger,
            "conditions": self.conditions.to_dict(),
            "enabled": self.enabled,
            "priority": self.priority,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoReleaseRule":
        return cls(
            id=data["id"],
            name=data["name"],
            trigger=data["trigger"],
            conditions=RuleConditions.from_dict(data.get("conditions")),
            enabled=data.get("enabled", True),
            priority=data.get("priority", 100),
            description=data.get("description") or "",
            created_by=data.get("created_by") or "system",
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class AutoReleaseLog:
    """What happened when a rule matched a booking."""

    id: str
    booking_id: str
    rule_id: str
    action: str
    reason: str
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    scheduled_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.action, ReleaseAction):
            self.action = self.action.value
        if self.action not in {a.value for a in ReleaseAction}:
            raise ValueError(f"Invalid action: {self.action}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "rule_id": self.rule_id,
            "action": self.action,
            "reason": self.reason,
            "error": self.error,
            "metadata": self.metadata,
            "scheduled_at": format_datetime(self.scheduled_at),
            "executed_at": format_datetime(self.executed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoReleaseLog":
        return cls(
            id=data["id"],
            booking_id=data["booking_id"],
            rule_id=data["rule_id"],
            action=data["action"],
            reason=data.get("reason") or "",
            error=data.get("error"),
            metadata=data.get("metadata") or {},
            scheduled_at=parse_datetime(data.get("scheduled_at")),
            executed_at=parse_datetime(data.get("executed_at")),
        )


# Default rules, evaluated in this order (priority, then id).
# client_confirmed is documentation of the direct path: the client's own
# confirmation releases immediately, so the sweep never needs it.
DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "id": "client_confirmed",
        "name": "Client Confirmed Completion",
        "description": "Immediate release when client confirms job completion",
        "trigger": RuleTrigger.STATUS_BASED.value,
        "priority": 10,
        "conditions": {
            "required_status": BookingStatus.WORKER_COMPLETED.value,
            "require_client_confirmation": True,
            "auto_release_after_hours": 0,
        },
    },
    {
        "id": "standard_completion",
        "name": "Standard Job Completion",
        "description": "Release payment 24 hours after the worker marks the job completed",
        "trigger": RuleTrigger.HYBRID.value,
        "priority": 20,
        "conditions": {
            "required_status": BookingStatus.WORKER_COMPLETED.value,
            "auto_release_after_hours": 24,
            "max_hold_duration_hours": 168,
        },
    },
    {
        "id": "emergency_release",
        "name": "Emergency Auto-Release",
        "description": "Force release payment after 7 days regardless of status",
        "trigger": RuleTrigger.TIME_BASED.value,
        "priority": 30,
        "conditions": {"max_hold_duration_hours": 168},
    },
]


def default_rules() -> List[AutoReleaseRule]:
    return [AutoReleaseRule.from_dict(dict(data)) for data in DEFAULT_RULES]
