"""Auto-release rule and log storage."""

import copy
import threading
from typing import List, Optional, Protocol

from errandwork.auto_release.models import AutoReleaseLog, AutoReleaseRule
from errandwork.types import utc_now


class AutoReleaseStorage(Protocol):
    """Protocol for auto-release persistence backends."""

    def save_rule(self, rule: AutoReleaseRule) -> str:
        """Insert or replace a rule."""
        ...

    def get_rule(self, rule_id: str) -> Optional[AutoReleaseRule]:
        ...

    def list_rules(self, enabled: Optional[bool] = None) -> List[AutoReleaseRule]:
        """Rules ordered by (priority, id)."""
        ...

    def save_log(self, log: AutoReleaseLog) -> str:
        """Append a log entry."""
        ...

    def list_logs(
        self,
        booking_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 50,
    ) -> List[AutoReleaseLog]:
        """Log entries, newest first."""
        ...


class InMemoryAutoReleaseStorage:
    """In-memory auto-release storage for testing and local development."""

    def __init__(self):
        self._rules: dict[str, AutoReleaseRule] = {}
        self._logs: List[AutoReleaseLog] = []
        self._lock = threading.Lock()

    # === Rules ===

    def save_rule(self, rule: AutoReleaseRule) -> str:
        with self._lock:
            stored = copy.deepcopy(rule)
            if rule.id in self._rules:
                stored.updated_at = utc_now()
            self._rules[rule.id] = stored
        return rule.id

    def get_rule(self, rule_id: str) -> Optional[AutoReleaseRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            return copy.deepcopy(rule) if rule else None

    def list_rules(self, enabled: Optional[bool] = None) -> List[AutoReleaseRule]:
        with self._lock:
            rules = [copy.deepcopy(r) for r in self._rules.values()]
        if enabled is not None:
            rules = [r for r in rules if r.enabled == enabled]
        rules.sort(key=lambda r: r.sort_key)
        return rules

    # === Logs ===

    def save_log(self, log: AutoReleaseLog) -> str:
        with self._lock:
            self._logs.append(copy.deepcopy(log))
        return log.id

    def list_logs(
        self,
        booking_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 50,
    ) -> List[AutoReleaseLog]:
        with self._lock:
            logs = [copy.deepcopy(entry) for entry in reversed(self._logs)]
        if booking_id is not None:
            logs = [entry for entry in logs if entry.booking_id == booking_id]
        if action is not None:
            action_value = action.value if hasattr(action, "value") else action
            logs = [entry for entry in logs if entry.action == action_value]
        return logs[:limit]
