"""Escrow settlement primitives."""

from errandwork.escrow.service import RELEASABLE_STATUSES, EscrowResult, EscrowService

__all__ = ["EscrowService", "EscrowResult", "RELEASABLE_STATUSES"]
