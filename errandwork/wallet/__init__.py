"""Wallets: per-user counters plus the append-only transaction ledger.

Models:
- Wallet: balance / escrow / lifetime totals
- WalletTransaction: One immutable ledger entry
- TransactionType: Kinds of money movement

Service:
- WalletService: hold, release, refund, top-up and reconciliation
"""

from errandwork.wallet.models import (
    TransactionType,
    Wallet,
    WalletTransaction,
    fee_transaction_id,
    hold_transaction_id,
    payout_transaction_id,
    refund_transaction_id,
    release_transaction_id,
)
from errandwork.wallet.service import (
    LedgerCheck,
    LedgerResult,
    ReleaseResult,
    WalletAudit,
    WalletService,
)
from errandwork.wallet.storage import InMemoryWalletStorage, WalletStorage

__all__ = [
    # Models
    "Wallet",
    "WalletTransaction",
    "TransactionType",
    "hold_transaction_id",
    "release_transaction_id",
    "payout_transaction_id",
    "refund_transaction_id",
    "fee_transaction_id",
    # Storage
    "WalletStorage",
    "InMemoryWalletStorage",
    # Service
    "WalletService",
    "LedgerResult",
    "ReleaseResult",
    "LedgerCheck",
    "WalletAudit",
]
