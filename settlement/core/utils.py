"""Shared utility functions for the settlement engine."""

import logging
from datetime import UTC, datetime
from pathlib import Path

import colorlog

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s" + LOG_FORMAT,
            datefmt=DATE_FORMAT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def add_file_handler(logger: logging.Logger, path: str | Path) -> None:
    """Attach a plain (not colorized) file handler to a logger, once."""
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return
    ensure_dir(Path(path).parent)
    file_handler = logging.FileHandler(path)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)


LOGGER_NAMES = (
    "settlement.accounts",
    "settlement.api",
    "settlement.bridge",
    "settlement.circle",
    "settlement.deposits",
    "settlement.http",
    "settlement.jobs",
    "settlement.lease",
    "settlement.ledger",
    "settlement.lifi",
    "settlement.queue",
    "settlement.reconciler",
    "settlement.swap",
    "settlement.webhooks",
    "settlement.worker",
)


def setup_logging(log_file: str | Path | None) -> None:
    """Set every engine logger to INFO and add the persistent (not colorized) log file."""
    for name in LOGGER_NAMES:
        logger = get_logger(name)
        logger.setLevel(logging.INFO)
        if log_file:
            add_file_handler(logger, log_file)


def ensure_dir(path: str | Path) -> None:
    """Ensure a directory exists (like mkdir -p)."""
    Path(path).mkdir(parents=True, exist_ok=True)


def utcnow() -> datetime:
    """Get the current UTC time as an aware datetime."""
    return datetime.now(UTC)


def utcnow_iso() -> str:
    """Get the current UTC time as an ISO8601 string."""
    return utcnow().isoformat(timespec="microseconds")


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a decimal string to integer base units, truncating excess precision.

    ``"100.5"`` with 6 decimals becomes ``100500000``. No float arithmetic is
    involved at any point.
    """
    amount = amount.strip()
    if amount.startswith("-"):
        msg = f"Amount must not be negative: {amount}"
        raise ValueError(msg)
    whole, _, fraction = amount.partition(".")
    if not (whole or fraction) or not (whole or "0").isdigit() or (fraction and not fraction.isdigit()):
        msg = f"Invalid decimal amount: {amount!r}"
        raise ValueError(msg)
    fraction = fraction.ljust(decimals, "0")[:decimals] if decimals > 0 else ""
    return int((whole or "0") + fraction)


def from_base_units(value: int, decimals: int) -> str:
    """Format integer base units as a decimal string without trailing zeros."""
    if decimals <= 0:
        return str(value)
    digits = str(value).rjust(decimals + 1, "0")
    whole, fraction = digits[:-decimals], digits[-decimals:].rstrip("0")
    return f"{whole}.{fraction}" if fraction else whole


def parse_int_maybe_hex(value: str | int | None) -> int:
    """Parse an integer given as decimal or ``0x``-prefixed hex; empty means zero."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = value.strip().lower()
    if not text:
        return 0
    return int(text, 16) if text.startswith("0x") else int(text)
