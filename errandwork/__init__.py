"""
ErrandWork - job marketplace core with escrowed payments.

Clients post jobs, workers apply, and the platform holds the client's
money in escrow until the work is confirmed, auto-released or refunded.
"""

from .config import MarketplaceConfig
from .marketplace import Marketplace, Result

try:
    from importlib.metadata import version

    __version__ = version("errandwork")
except Exception:
    __version__ = "0.0.0"

__all__ = ["Marketplace", "Result", "MarketplaceConfig"]
