"""Helper functions for watch_feeds CLI."""

from __future__ import annotations

import argparse

from common.cli_helpers import parse_log_level


def parse_watch_feeds_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="filterflow",
        description="Watch RSS feeds and sitemaps and report items relevant to your topics.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Config name in configs/ or path to a YAML file (default: $FILTERFLOW_CONFIG or prod).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit.",
    )
    parser.add_argument(
        "--log-level",
        type=parse_log_level,
        default="INFO",
        help="DEBUG, INFO, WARNING or ERROR (default: INFO).",
    )
    return parser.parse_args(argv)
