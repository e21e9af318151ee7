"""
Wallet storage layer.

Wallet counters only change through ``update_wallet`` with an expected
version (compare-and-set). Ledger entries are insert-only and their ids are
unique, so a second insert of the same movement fails with
``DuplicateTransactionError``.
"""

import copy
import logging
import threading
from typing import List, Optional, Protocol

from errandwork.types import (
    DuplicateTransactionError,
    RecordNotFoundError,
    VersionConflictError,
    utc_now,
)
from errandwork.wallet.models import Wallet, WalletTransaction

logger = logging.getLogger(__name__)


class WalletStorage(Protocol):
    """Protocol for wallet persistence backends."""

    # Wallets
    def get_wallet(self, user_id: str) -> Optional[Wallet]:
        """Get a user's wallet."""
        ...

    def create_wallet(self, wallet: Wallet) -> Wallet:
        """Insert a wallet unless one exists. Returns the stored wallet."""
        ...

    def update_wallet(self, wallet: Wallet, expected_version: int) -> Wallet:
        """Write counters if the stored version matches.

        Returns the stored wallet with its version bumped. Raises
        VersionConflictError on mismatch, RecordNotFoundError if missing.
        """
        ...

    def list_wallets(self) -> List[Wallet]:
        """List all wallets."""
        ...

    # Ledger
    def append_transaction(self, tx: WalletTransaction) -> WalletTransaction:
        """Insert a ledger entry. Raises DuplicateTransactionError if the id exists."""
        ...

    def get_transaction(self, transaction_id: str) -> Optional[WalletTransaction]:
        """Get a ledger entry by id."""
        ...

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        limit: int = 1000,
    ) -> List[WalletTransaction]:
        """List ledger entries, oldest first."""
        ...


class InMemoryWalletStorage:
    """In-memory wallet storage for testing and local development.

    A single lock makes each call atomic, which is what the
    compare-and-set contract needs.
    """

    def __init__(self):
        self._wallets: dict[str, Wallet] = {}
        self._transactions: dict[str, WalletTransaction] = {}
        self._lock = threading.Lock()

    # === Wallets ===

    def get_wallet(self, user_id: str) -> Optional[Wallet]:
        with self._lock:
            wallet = self._wallets.get(user_id)
            return copy.deepcopy(wallet) if wallet else None

    def create_wallet(self, wallet: Wallet) -> Wallet:
        with self._lock:
            existing = self._wallets.get(wallet.user_id)
            if existing is not None:
                return copy.deepcopy(existing)
            stored = copy.deepcopy(wallet)
            stored.created_at = stored.created_at or utc_now()
            stored.updated_at = stored.created_at
            self._wallets[wallet.user_id] = stored
            return copy.deepcopy(stored)

    def update_wallet(self, wallet: Wallet, expected_version: int) -> Wallet:
        with self._lock:
            current = self._wallets.get(wallet.user_id)
            if current is None:
                raise RecordNotFoundError("wallets", wallet.user_id)
            if current.version != expected_version:
                raise VersionConflictError(
                    "wallets", wallet.user_id, expected_version, current.version
                )
            stored = copy.deepcopy(wallet)
            stored.version = expected_version + 1
            stored.created_at = current.created_at
            stored.updated_at = utc_now()
            self._wallets[wallet.user_id] = stored
            return copy.deepcopy(stored)

    def list_wallets(self) -> List[Wallet]:
        with self._lock:
            return [copy.deepcopy(w) for w in self._wallets.values()]

    # === Ledger ===

    def append_transaction(self, tx: WalletTransaction) -> WalletTransaction:
        with self._lock:
            if tx.id in self._transactions:
                raise DuplicateTransactionError(tx.id)
            self._transactions[tx.id] = copy.deepcopy(tx)
            return copy.deepcopy(tx)

    def get_transaction(self, transaction_id: str) -> Optional[WalletTransaction]:
        with self._lock:
            tx = self._transactions.get(transaction_id)
            return copy.deepcopy(tx) if tx else None

    def list_transactions(
        self,
        user_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        limit: int = 1000,
    ) -> List[WalletTransaction]:
        with self._lock:
            txs = list(self._transactions.values())

        if user_id is not None:
            txs = [t for t in txs if t.user_id == user_id]
        if booking_id is not None:
            txs = [t for t in txs if t.booking_id == booking_id]

        # Insertion order is ledger order
        return [copy.deepcopy(t) for t in txs[:limit]]
