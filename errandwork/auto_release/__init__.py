"""Rule-driven automatic escrow release.

Models:
- AutoReleaseRule / RuleConditions: Configured rules (tagged by trigger)
- AutoReleaseLog: What a sweep did to a booking
- DEFAULT_RULES: The rules installed by ``ensure_default_rules``

Service:
- AutoReleaseService: Sweeps, manual release, rule management
"""

from errandwork.auto_release.models import (
    DEFAULT_RULES,
    AutoReleaseLog,
    AutoReleaseRule,
    ReleaseAction,
    RuleConditions,
    RuleTrigger,
    TriggeredBy,
    default_rules,
)
from errandwork.auto_release.service import (
    EVALUATORS,
    AutoReleaseService,
    RuleDecision,
    SweepReport,
)
from errandwork.auto_release.storage import AutoReleaseStorage, InMemoryAutoReleaseStorage

__all__ = [
    # Models
    "AutoReleaseRule",
    "RuleConditions",
    "AutoReleaseLog",
    "RuleTrigger",
    "ReleaseAction",
    "TriggeredBy",
    "DEFAULT_RULES",
    "default_rules",
    # Storage
    "AutoReleaseStorage",
    "InMemoryAutoReleaseStorage",
    # Service
    "AutoReleaseService",
    "SweepReport",
    "RuleDecision",
    "EVALUATORS",
]
