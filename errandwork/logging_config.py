"""Logging setup for errandwork.

Two outputs:
- ``local-{date}.log``: the regular ``errandwork`` logger tree.
- ``money-events-{date}.log``: one line per hold/release/refund, kept apart
  so escrow movements can be audited without wading through debug output.

Both live under ``$ERRANDWORK_DATA_DIR/logs`` (default ``~/.errandwork/logs``).
"""

import logging
import os
from datetime import date
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
EVENT_FORMAT = "%(asctime)s | %(message)s"

_event_logger_name = "errandwork.money_events"


def get_log_dir() -> Path:
    """Resolve (and create) the log directory."""
    base = os.environ.get("ERRANDWORK_DATA_DIR")
    root = Path(base) if base else Path.home() / ".errandwork"
    log_dir = root / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_errandwork_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``errandwork`` logger with a dated file handler.

    DEBUG also echoes to the console. Calling this twice does not add
    duplicate handlers.
    """
    logger = logging.getLogger("errandwork")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    log_file = get_log_dir() / f"local-{date.today().isoformat()}.log"
    has_file = any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_file
        for h in logger.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    if resolved == logging.DEBUG:
        has_console = any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in logger.handlers
        )
        if not has_console:
            console = logging.StreamHandler()
            console.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(console)

    return logger


def _event_logger() -> logging.Logger:
    logger = logging.getLogger(_event_logger_name)
    logger.propagate = False
    logger.setLevel(logging.INFO)
    log_file = get_log_dir() / f"money-events-{date.today().isoformat()}.log"
    if not any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_file
        for h in logger.handlers
    ):
        for stale in list(logger.handlers):
            logger.removeHandler(stale)
            stale.close()
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(EVENT_FORMAT))
        logger.addHandler(handler)
    return logger


def log_money_event(event_type: str, details: str, booking_id: Optional[str] = None) -> None:
    """Append a line to the money-events log.

    Format: ``{event_type} | booking={booking_id} | {details}``.
    """
    _event_logger().info(f"{event_type} | booking={booking_id or '-'} | {details}")


def log_hold(booking_id: str, client_id: str, amount) -> None:
    log_money_event("hold", f"client={client_id} | amount={amount}", booking_id)


def log_release(booking_id: str, client_id: str, worker_id: str, amount, reason: str) -> None:
    log_money_event(
        "release",
        f"client={client_id} | worker={worker_id} | amount={amount} | reason={reason}",
        booking_id,
    )


def log_refund(booking_id: str, client_id: str, amount, reason: str) -> None:
    log_money_event(
        "refund", f"client={client_id} | amount={amount} | reason={reason}", booking_id
    )
