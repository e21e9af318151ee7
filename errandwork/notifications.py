"""
Notification dispatch.

Delivery (push, email, SMS) belongs to external collaborators behind the
``Notifier`` protocol. Services talk to a ``NotificationDispatcher``, which
never lets a delivery failure escape: money movement must not fail because
an SMS gateway is down.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Events users are told about."""

    APPLICATION_RECEIVED = "application_received"
    WORKER_SELECTED = "worker_selected"
    SELECTION_ACCEPTED = "selection_accepted"
    SELECTION_DECLINED = "selection_declined"
    SELECTION_EXPIRED = "selection_expired"
    WORKER_UNPICKED = "worker_unpicked"
    WORKER_CANCELLED = "worker_cancelled"
    JOB_EXPIRED = "job_expired"
    WORK_STARTED = "work_started"
    WORK_COMPLETED = "work_completed"
    PAYMENT_RELEASED = "payment_released"
    PAYMENT_REFUNDED = "payment_refunded"
    CANCELLATION_REQUESTED = "cancellation_requested"
    BOOKING_CANCELLED = "booking_cancelled"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    WALLET_FUNDED = "wallet_funded"


class Notifier(Protocol):
    """Delivery capability. May raise; the dispatcher absorbs failures."""

    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Notifier that only writes a log line. Used when no channel is configured."""

    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification | user={user_id} | kind={kind} | payload={payload}")


class RecordingNotifier:
    """Keeps every notification in memory. Handy for tests and local runs."""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    def notify(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        self.sent.append((user_id, kind, dict(payload)))

    def kinds_for(self, user_id: str) -> List[str]:
        return [kind for uid, kind, _ in self.sent if uid == user_id]


class NotificationDispatcher:
    """Fire-and-forget wrapper around a Notifier."""

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()

    def send(self, user_id: Optional[str], kind: NotificationKind, **payload) -> bool:
        """Deliver one notification. Returns False instead of raising on failure."""
        if not user_id:
            return False
        kind_value = kind.value if isinstance(kind, NotificationKind) else str(kind)
        try:
            self.notifier.notify(user_id, kind_value, payload)
            return True
        except Exception as e:
            logger.error(f"Notification failed | user={user_id} | kind={kind_value} | error={e}")
            return False
