"""Common CLI helper utilities."""

from __future__ import annotations

import argparse
import logging

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def setup_logging(level: str = "INFO") -> None:
    """Configure standard logging format for CLI tools."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    # urllib3 logs every retry at WARNING; the HTTP layer already reports them
    logging.getLogger("urllib3").setLevel(logging.ERROR)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_log_level(value: str) -> str:
    """Parse a log level name for argparse arguments.

    Raises:
        argparse.ArgumentTypeError: If the value is not a known level.
    """
    level = value.strip().upper()
    if level not in LOG_LEVELS:
        raise argparse.ArgumentTypeError(f"log level must be one of {', '.join(LOG_LEVELS)}")
    return level
