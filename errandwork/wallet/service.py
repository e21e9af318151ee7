"""
Wallet service.

Money moves through four primitives: ``top_up``, ``hold``, ``release`` and
``refund``. Each writes one ledger entry per wallet it touches and updates
the cached counters with a compare-and-set retry loop, never a blind write.

Ordering:
- Credits and escrow exits (top-up, release, payout, refund) append the
  ledger entry first. The entry id is the idempotency key, so a repeated
  call finds the entry and skips the counters. If a process dies between
  the two writes, ``rebuild_wallet`` restores the counters from the ledger.
- Holds update the counters first because the non-negativity guard has to
  be atomic with the debit. If the ledger entry then cannot be written,
  the counter move is reversed so no escrow exists without its entry.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from errandwork.config import MarketplaceConfig
from errandwork.errors import (
    InsufficientFundsError,
    InternalError,
    ProviderError,
    WalletInvariantError,
)
from errandwork.logging_config import log_hold, log_money_event
from errandwork.types import (
    DuplicateTransactionError,
    RecordNotFoundError,
    VersionConflictError,
    to_amount,
)
from errandwork.wallet.models import (
    ZERO,
    TransactionType,
    Wallet,
    WalletTransaction,
    fee_transaction_id,
    hold_transaction_id,
    payout_transaction_id,
    refund_transaction_id,
    release_transaction_id,
)
from errandwork.wallet.storage import WalletStorage

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    """Outcome of one money movement on one wallet."""

    applied: bool  # False when the entry already existed
    transaction: WalletTransaction
    wallet: Optional[Wallet] = None


@dataclass
class ReleaseResult:
    """Both sides of an escrow release."""

    client: LedgerResult
    worker: LedgerResult
    fee: Optional[LedgerResult] = None  # platform side, absent when the fee is zero

    @property
    def applied(self) -> bool:
        return self.client.applied or self.worker.applied


@dataclass
class LedgerCheck:
    """Result of comparing total client escrow with held bookings."""

    total_escrow: Decimal
    total_held: Decimal

    @property
    def balanced(self) -> bool:
        return self.total_escrow == self.total_held


@dataclass
class WalletAudit:
    """Cached counters vs. counters replayed from the ledger."""

    user_id: str
    cached: Wallet
    replayed: Wallet

    @property
    def drift(self) -> bool:
        return (
            self.cached.balance != self.replayed.balance
            or self.cached.escrow != self.replayed.escrow
        )


class WalletService:
    """Service for wallet counters and the append-only ledger."""

    def __init__(self, storage: WalletStorage, config: Optional[MarketplaceConfig] = None):
        self.storage = storage
        self.config = config or MarketplaceConfig()

    # === Reads ===

    def get_wallet(self, user_id: str) -> Wallet:
        """Get a user's wallet, creating an empty one on first use."""
        wallet = self.storage.get_wallet(user_id)
        if wallet is None:
            wallet = self.storage.create_wallet(Wallet(user_id=user_id))
            logger.info(f"Wallet created | user={user_id}")
        return wallet

    def available_balance(self, user_id: str) -> Decimal:
        return self.get_wallet(user_id).available

    def list_transactions(self, user_id: str, limit: int = 100) -> List[WalletTransaction]:
        return self.storage.list_transactions(user_id=user_id, limit=limit)

    # === Primitives ===

    def top_up(
        self,
        user_id: str,
        amount,
        reference: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> LedgerResult:
        """Credit a verified payment. The payment reference is the entry id."""
        if not reference:
            raise ValueError("Payment reference is required")
        tx = WalletTransaction(
            id=reference,
            user_id=user_id,
            type=TransactionType.TOPUP,
            amount=amount,
            reference=reference,
            description=description or "Wallet top-up",
            metadata=metadata or {},
        )
        result = self._append_then_apply(tx)
        if result.applied:
            log_money_event("topup", f"user={user_id} | amount={tx.amount} | ref={reference}")
        return result

    def top_up_from_provider(self, user_id: str, reference: str, provider) -> LedgerResult:
        """Verify a payment with the provider and credit it once."""
        verification = provider.verify_payment(reference)
        if not verification.successful:
            raise ProviderError(
                f"Payment {reference} not successful: {verification.status}",
                details={"reference": reference, "status": verification.status},
            )
        paid_for = verification.metadata.get("user_id")
        if paid_for and paid_for != user_id:
            raise ProviderError(
                "Payment belongs to a different user", details={"reference": reference}
            )
        return self.top_up(
            user_id,
            verification.amount,
            reference,
            description="Wallet top-up via payment provider",
            metadata={"provider_status": verification.status},
        )

    def hold(self, user_id: str, booking_id: str, amount) -> LedgerResult:
        """Move funds from balance into escrow for a booking.

        Raises InsufficientFundsError if the balance cannot cover it. If the
        ledger entry cannot be written, the counter move is reversed before
        the error propagates.
        """
        tx = WalletTransaction(
            id=hold_transaction_id(booking_id),
            user_id=user_id,
            type=TransactionType.BOOKING_HOLD,
            amount=amount,
            booking_id=booking_id,
            description="Escrow hold for booking",
        )
        existing = self.storage.get_transaction(tx.id)
        if existing is not None:
            return LedgerResult(applied=False, transaction=existing)

        def insufficient(wallet: Wallet, exc: ValueError):
            raise InsufficientFundsError(tx.amount, wallet.available) from exc

        wallet = self._apply_counters(tx, on_invalid=insufficient)
        try:
            stored = self.storage.append_transaction(tx)
        except DuplicateTransactionError:
            # A concurrent hold for the same booking won; its counters already moved
            logger.warning(f"Hold entry appeared concurrently, reversing counters | tx={tx.id}")
            self._reverse_hold(tx)
            return LedgerResult(applied=False, transaction=self.storage.get_transaction(tx.id) or tx)
        except Exception:
            logger.error(f"Hold entry could not be written, reversing counters | tx={tx.id}")
            self._reverse_hold(tx)
            raise
        log_hold(booking_id, user_id, tx.amount)
        return LedgerResult(applied=True, transaction=stored, wallet=wallet)

    def release(
        self, client_id: str, worker_id: str, booking_id: str, amount, fee=ZERO
    ) -> ReleaseResult:
        """Pay escrowed funds to the worker, less the platform fee.

        The client's escrow drops by the full ``amount``; the worker gets
        ``amount - fee`` and the platform account gets ``fee``.
        """
        amount = to_amount(amount)
        fee = to_amount(fee)
        if fee < 0 or fee >= amount:
            raise ValueError(f"Invalid platform fee {fee} for amount {amount}")
        client_side = self._append_then_apply(
            WalletTransaction(
                id=release_transaction_id(booking_id),
                user_id=client_id,
                type=TransactionType.BOOKING_RELEASE,
                amount=amount,
                booking_id=booking_id,
                description="Escrow released to worker",
            )
        )
        worker_side = self._append_then_apply(
            WalletTransaction(
                id=payout_transaction_id(booking_id),
                user_id=worker_id,
                type=TransactionType.BOOKING_PAYOUT,
                amount=amount - fee,
                booking_id=booking_id,
                description="Payment received for booking",
                metadata={"gross": str(amount), "platform_fee": str(fee)},
            )
        )
        fee_side = None
        if fee > 0:
            fee_side = self._append_then_apply(
                WalletTransaction(
                    id=fee_transaction_id(booking_id),
                    user_id=self.config.platform_account_id,
                    type=TransactionType.PLATFORM_FEE,
                    amount=fee,
                    booking_id=booking_id,
                    description="Platform fee",
                )
            )
        return ReleaseResult(client=client_side, worker=worker_side, fee=fee_side)

    def refund(self, client_id: str, booking_id: str, amount) -> LedgerResult:
        """Return escrowed funds to the client's balance."""
        return self._append_then_apply(
            WalletTransaction(
                id=refund_transaction_id(booking_id),
                user_id=client_id,
                type=TransactionType.BOOKING_REFUND,
                amount=amount,
                booking_id=booking_id,
                description="Escrow refunded",
            )
        )

    # === Reconciliation ===

    def audit_wallet(self, user_id: str) -> WalletAudit:
        """Compare cached counters against a ledger replay."""
        cached = self.get_wallet(user_id)
        replayed = Wallet.replay(user_id, self.storage.list_transactions(user_id=user_id))
        return WalletAudit(user_id=user_id, cached=cached, replayed=replayed)

    def rebuild_wallet(self, user_id: str) -> Wallet:
        """Overwrite cached counters with the ledger replay."""
        for _ in range(self.config.wallet_cas_retries):
            audit = self.audit_wallet(user_id)
            if not audit.drift:
                return audit.cached
            replayed = audit.replayed
            replayed.version = audit.cached.version
            replayed.created_at = audit.cached.created_at
            try:
                wallet = self.storage.update_wallet(replayed, expected_version=audit.cached.version)
            except VersionConflictError:
                continue
            logger.warning(
                f"Wallet rebuilt from ledger | user={user_id} | "
                f"balance {audit.cached.balance}->{wallet.balance} | "
                f"escrow {audit.cached.escrow}->{wallet.escrow}"
            )
            return wallet
        raise InternalError(f"Could not rebuild wallet {user_id}: persistent conflicts")

    def check_ledger_invariant(self, held_amounts: Iterable) -> LedgerCheck:
        """Compare total escrow against the budget of every held booking."""
        total_escrow = sum((w.escrow for w in self.storage.list_wallets()), ZERO)
        total_held = sum((to_amount(a) for a in held_amounts), ZERO)
        return LedgerCheck(total_escrow=total_escrow, total_held=total_held)

    # === Internals ===

    def _append_then_apply(self, tx: WalletTransaction) -> LedgerResult:
        try:
            stored = self.storage.append_transaction(tx)
        except DuplicateTransactionError:
            logger.info(f"Ledger entry already recorded, skipping | tx={tx.id}")
            return LedgerResult(applied=False, transaction=self.storage.get_transaction(tx.id) or tx)

        def invariant_broken(wallet: Wallet, exc: ValueError):
            logger.error(f"Wallet invariant violation | tx={tx.id} | {exc}")
            raise WalletInvariantError(str(exc), details={"transaction_id": tx.id}) from exc

        wallet = self._apply_counters(stored, on_invalid=invariant_broken)
        return LedgerResult(applied=True, transaction=stored, wallet=wallet)

    def _reverse_hold(self, tx: WalletTransaction) -> None:
        """Undo the counter move of a hold whose ledger entry was not written."""
        reversal = WalletTransaction(
            id=f"{tx.id}_reversal",
            user_id=tx.user_id,
            type=TransactionType.BOOKING_REFUND,
            amount=tx.amount,
            booking_id=tx.booking_id,
        )

        def invariant_broken(wallet: Wallet, exc: ValueError):
            logger.error(f"Hold reversal would break wallet invariants | tx={tx.id} | {exc}")
            raise WalletInvariantError(str(exc), details={"transaction_id": tx.id}) from exc

        self._apply_counters(reversal, on_invalid=invariant_broken)

    def _apply_counters(
        self,
        tx: WalletTransaction,
        on_invalid: Callable[[Wallet, ValueError], None],
    ) -> Wallet:
        """Apply a transaction's deltas with compare-and-set, retrying on conflict."""
        for attempt in range(1, self.config.wallet_cas_retries + 1):
            current = self.get_wallet(tx.user_id)
            try:
                updated = current.apply(tx)
            except ValueError as exc:
                on_invalid(current, exc)
                raise
            try:
                return self.storage.update_wallet(updated, expected_version=current.version)
            except VersionConflictError:
                logger.warning(
                    f"Race condition detected on wallet {tx.user_id}: "
                    f"version {current.version} changed (attempt {attempt}) | tx={tx.id}"
                )
            except RecordNotFoundError as exc:
                raise InternalError(f"Wallet {tx.user_id} disappeared during update") from exc
        raise InternalError(
            f"Wallet {tx.user_id} update kept conflicting after "
            f"{self.config.wallet_cas_retries} attempts",
            details={"transaction_id": tx.id},
        )
