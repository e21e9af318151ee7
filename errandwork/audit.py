"""
State transition audit log.

Every job and booking status change writes one StateTransition. Records are
append-only and never updated.
"""

import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from errandwork.types import format_datetime, parse_datetime, utc_now


@dataclass
class StateTransition:
    """Audit log entry for a status change.

    Attributes:
        id: Unique identifier
        entity_type: "job", "application" or "booking"
        entity_id: ID of the record that changed
        from_status: Previous status (None for creation)
        to_status: New status
        actor_id: User or system actor that caused the change
        metadata: Additional context (reason, amounts, rule id)
    """

    id: str
    entity_type: str
    entity_id: str
    to_status: str
    actor_id: str
    from_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.entity_type not in ("job", "application", "booking"):
            raise ValueError(f"Invalid entity_type: {self.entity_type}")
        if self.created_at is None:
            self.created_at = utc_now()

    @classmethod
    def record(
        cls,
        entity_type: str,
        entity_id: str,
        from_status: Optional[str],
        to_status: str,
        actor_id: str,
        **metadata,
    ) -> "StateTransition":
        return cls(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "metadata": self.metadata,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateTransition":
        return cls(
            id=data["id"],
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            actor_id=data["actor_id"],
            metadata=data.get("metadata") or {},
            created_at=parse_datetime(data.get("created_at")),
        )


class TransitionLog(Protocol):
    """Protocol for transition audit backends."""

    def save_transition(self, transition: StateTransition) -> str:
        """Append a transition. Returns its ID."""
        ...

    def get_transitions(self, entity_type: str, entity_id: str) -> List[StateTransition]:
        """Transitions for one record, oldest first."""
        ...


class InMemoryTransitionLog:
    """In-memory transition log for testing and local development."""

    def __init__(self):
        self._transitions: List[StateTransition] = []
        self._lock = threading.Lock()

    def save_transition(self, transition: StateTransition) -> str:
        with self._lock:
            self._transitions.append(copy.deepcopy(transition))
        return transition.id

    def get_transitions(self, entity_type: str, entity_id: str) -> List[StateTransition]:
        with self._lock:
            return [
                copy.deepcopy(t)
                for t in self._transitions
                if t.entity_type == entity_type and t.entity_id == entity_id
            ]
