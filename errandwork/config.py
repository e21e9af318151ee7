"""Configuration for the errandwork marketplace core."""

import os
from dataclasses import dataclass, fields
from decimal import Decimal

from errandwork.types import to_amount

KOBO = Decimal("0.01")


@dataclass
class MarketplaceConfig:
    """Policy knobs shared by the marketplace services.

    Defaults match production policy; tests override individual fields.
    """

    # Hours a selected worker has to accept or decline
    acceptance_window_hours: float = 1.0
    # Hours after assignment before a worker may cancel
    worker_cancel_wait_hours: float = 24.0
    # Days before an unfilled job posting expires
    default_job_expiry_days: int = 30
    # CAS attempts for a single wallet counter update
    wallet_cas_retries: int = 5
    # Max bookings examined per auto-release sweep
    sweep_batch_limit: int = 500
    currency: str = "NGN"
    # Commission kept from every release, as a percentage of the budget
    platform_fee_percent: float = 5.0
    # Wallet that receives the commission
    platform_account_id: str = "platform"

    def __post_init__(self):
        if self.acceptance_window_hours <= 0:
            raise ValueError("acceptance_window_hours must be positive")
        if self.worker_cancel_wait_hours < 0:
            raise ValueError("worker_cancel_wait_hours cannot be negative")
        if self.default_job_expiry_days < 1:
            raise ValueError("default_job_expiry_days must be at least 1")
        if self.wallet_cas_retries < 1:
            raise ValueError("wallet_cas_retries must be at least 1")
        if self.sweep_batch_limit < 1:
            raise ValueError("sweep_batch_limit must be at least 1")
        if not 0 <= self.platform_fee_percent < 100:
            raise ValueError("platform_fee_percent must be between 0 and 100")
        if not self.platform_account_id:
            raise ValueError("platform_account_id is required")

    def platform_fee(self, amount) -> Decimal:
        """Commission on a release, rounded to the kobo.

        Never the whole amount: the worker is always paid at least one kobo.
        """
        amount = to_amount(amount)
        fee = to_amount(amount * Decimal(str(self.platform_fee_percent)) / 100)
        return min(fee, amount - KOBO)

    @classmethod
    def from_env(cls, prefix: str = "ERRANDWORK_") -> "MarketplaceConfig":
        """Build a config from environment variables.

        ``ERRANDWORK_ACCEPTANCE_WINDOW_HOURS=2`` overrides
        ``acceptance_window_hours``; unset variables keep their defaults.
        """
        kwargs = {}
        for f in fields(cls):
            raw = os.environ.get(f"{prefix}{f.name.upper()}")
            if raw is None or raw == "":
                continue
            if f.type in (float, "float"):
                kwargs[f.name] = float(raw)
            elif f.type in (int, "int"):
                kwargs[f.name] = int(raw)
            else:
                kwargs[f.name] = raw
        return cls(**kwargs)
