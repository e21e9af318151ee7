"""API routes."""

from .bookings import router as bookings_router
from .jobs import router as jobs_router
from .maintenance import router as maintenance_router
from .wallets import router as wallets_router

__all__ = [
    "jobs_router",
    "bookings_router",
    "wallets_router",
    "maintenance_router",
]
