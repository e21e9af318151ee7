"""
Wallet data models.

A wallet holds two counters per user: ``balance`` (spendable) and ``escrow``
(earmarked against open bookings). Escrow is tracked separately, not as a
subset of balance: a hold moves money from balance into escrow.

Counters are cached totals. The authoritative record is the append-only
list of WalletTransaction entries, and ``Wallet.replay`` rebuilds the
counters from them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from errandwork.types import format_datetime, parse_datetime, to_amount, utc_now

ZERO = Decimal("0.00")


class TransactionType(str, Enum):
    """Kinds of ledger entry."""

    TOPUP = "topup"
    BOOKING_HOLD = "booking_hold"
    BOOKING_RELEASE = "booking_release"  # client escrow leaves to the worker
    BOOKING_PAYOUT = "booking_payout"  # worker side of a release
    BOOKING_REFUND = "booking_refund"
    PLATFORM_FEE = "platform_fee"  # commission kept from a release


def hold_transaction_id(booking_id: str) -> str:
    return f"hold_{booking_id}"


def release_transaction_id(booking_id: str) -> str:
    return f"release_{booking_id}"


def payout_transaction_id(booking_id: str) -> str:
    return f"payout_{booking_id}"


def refund_transaction_id(booking_id: str) -> str:
    return f"refund_{booking_id}"


def fee_transaction_id(booking_id: str) -> str:
    return f"fee_{booking_id}"


@dataclass
class Wallet:
    """Per-user balance and escrow counters."""

    user_id: str
    balance: Decimal = ZERO
    escrow: Decimal = ZERO
    total_earned: Decimal = ZERO
    total_spent: Decimal = ZERO
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("user_id is required")
        self.balance = to_amount(self.balance)
        self.escrow = to_amount(self.escrow)
        self.total_earned = to_amount(self.total_earned)
        self.total_spent = to_amount(self.total_spent)
        if self.balance < 0:
            raise ValueError("Balance cannot be negative")
        if self.escrow < 0:
            raise ValueError("Escrow cannot be negative")

    @property
    def available(self) -> Decimal:
        """Spendable funds."""
        return self.balance

    def apply(self, tx: "WalletTransaction") -> "Wallet":
        """Return a copy with the transaction's deltas applied.

        Raises ValueError if the result would break a non-negativity
        invariant; the stored wallet is never touched.
        """
        balance = self.balance + tx.balance_delta
        escrow = self.escrow + tx.escrow_delta
        if balance < 0:
            raise ValueError(
                f"Balance would go negative for {self.user_id}: {self.balance} + {tx.balance_delta}"
            )
        if escrow < 0:
            raise ValueError(
                f"Escrow would go negative for {self.user_id}: {self.escrow} + {tx.escrow_delta}"
            )
        total_earned = self.total_earned
        total_spent = self.total_spent
        if tx.type == TransactionType.BOOKING_PAYOUT.value:
            total_earned += tx.amount
        elif tx.type == TransactionType.BOOKING_RELEASE.value:
            total_spent += tx.amount
        return Wallet(
            user_id=self.user_id,
            balance=balance,
            escrow=escrow,
            total_earned=total_earned,
            total_spent=total_spent,
            version=self.version,
            created_at=self.created_at,
            updated_at=utc_now(),
        )

    @classmethod
    def replay(cls, user_id: str, transactions: Iterable["WalletTransaction"]) -> "Wallet":
        """Rebuild counters from the ledger. Entries must be in ledger order."""
        wallet = cls(user_id=user_id)
        for tx in transactions:
            wallet = wallet.apply(tx)
        return wallet

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance": str(self.balance),
            "escrow": str(self.escrow),
            "total_earned": str(self.total_earned),
            "total_spent": str(self.total_spent),
            "version": self.version,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Wallet":
        return cls(
            user_id=data["user_id"],
            balance=data.get("balance") or ZERO,
            escrow=data.get("escrow") or ZERO,
            total_earned=data.get("total_earned") or ZERO,
            total_spent=data.get("total_spent") or ZERO,
            version=data.get("version", 1),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


# Signed effect of each transaction type on (balance, escrow)
_DELTA_SIGNS = {
    TransactionType.TOPUP.value: (1, 0),
    TransactionType.BOOKING_HOLD.value: (-1, 1),
    TransactionType.BOOKING_RELEASE.value: (0, -1),
    TransactionType.BOOKING_PAYOUT.value: (1, 0),
    TransactionType.BOOKING_REFUND.value: (1, -1),
    TransactionType.PLATFORM_FEE.value: (1, 0),
}


@dataclass
class WalletTransaction:
    """Append-only ledger entry. ``id`` is the idempotency key."""

    id: str
    user_id: str
    type: str
    amount: Decimal
    booking_id: Optional[str] = None
    reference: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Transaction id is required")
        if isinstance(self.type, TransactionType):
            self.type = self.type.value
        if self.type not in _DELTA_SIGNS:
            raise ValueError(f"Invalid transaction type: {self.type}")
        self.amount = to_amount(self.amount)
        if self.amount <= 0:
            raise ValueError("Amount must be positive")
        if self.created_at is None:
            self.created_at = utc_now()

    @property
    def balance_delta(self) -> Decimal:
        return self.amount * _DELTA_SIGNS[self.type][0]

    @property
    def escrow_delta(self) -> Decimal:
        return self.amount * _DELTA_SIGNS[self.type][1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": str(self.amount),
            "booking_id": self.booking_id,
            "reference": self.reference,
            "description": self.description,
            "metadata": self.metadata,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletTransaction":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            type=data["type"],
            amount=data["amount"],
            booking_id=data.get("booking_id"),
            reference=data.get("reference"),
            description=data.get("description"),
            metadata=data.get("metadata") or {},
            created_at=parse_datetime(data.get("created_at")),
        )
