"""Payment provider capability."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from errandwork.types import format_datetime


@dataclass
class PaymentVerification:
    """A provider's answer about one payment reference."""

    reference: str
    status: str
    amount: Decimal  # Major units (naira)
    currency: str = "NGN"
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def successful(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "status": self.status,
            "amount": str(self.amount),
            "currency": self.currency,
            "paid_at": format_datetime(self.paid_at),
            "channel": self.channel,
            "metadata": self.metadata,
        }


@dataclass
class ChargeInitialization:
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


class PaymentProvider(Protocol):
    """Verifies and starts card/bank payments that fund wallets."""

    def verify_payment(self, reference: str) -> PaymentVerification:
        ...

    def initialize_charge(
        self,
        email: str,
        amount,
        reference: str,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChargeInitialization:
        ...
