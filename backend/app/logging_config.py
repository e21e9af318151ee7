"""Logging for the ErrandWork backend.

Route modules log under ``errandwork.api.*`` so one handler on the
``errandwork`` logger covers both the API and the marketplace core.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Send the ``errandwork`` logger tree to stderr. Safe to call twice."""
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("errandwork")
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger in the ``errandwork`` tree."""
    if not name.startswith("errandwork"):
        name = f"errandwork.api.{name}"
    return logging.getLogger(name)
