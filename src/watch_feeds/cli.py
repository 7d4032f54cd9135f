"""CLI for watching feeds and sitemaps for relevant news."""

from __future__ import annotations

import logging
import signal
import sys

from dotenv import load_dotenv

from classify_items.classify_items import RelevanceClassifier
from common.cli_helpers import setup_logging
from common.errors import CacheError, ConfigError
from common.http import HttpClient
from dedup_cache.dedup_cache import DedupCache
from watch_feeds.config import Config, load_config
from watch_feeds.helpers import parse_watch_feeds_args
from watch_feeds.present import present_relevant_item
from watch_feeds.scheduler import Scheduler, Ticker
from watch_feeds.watch_feeds import FeedWatcher

logger = logging.getLogger(__name__)


def _log_startup(config: Config) -> None:
    logger.info("Model: %s at %s", config.llm.model, config.llm.endpoint)
    logger.info("Interval: %d minutes", config.interval_minutes)
    logger.info("Include: %s", ", ".join(config.include))
    logger.info("Exclude: %s", ", ".join(config.exclude) or "(none)")
    logger.info("Sources: %d feeds, %d sitemaps", len(config.feeds), len(config.sitemaps))
    logger.info("Cache: %s", config.cache_path)
    if config.http.proxy:
        logger.info("Proxy: %s", config.http.proxy)


def main() -> None:
    load_dotenv()
    args = parse_watch_feeds_args()
    setup_logging(args.log_level)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    _log_startup(config)

    try:
        cache = DedupCache(config.cache_path)
    except CacheError as e:
        logger.error("%s", e)
        sys.exit(1)

    # HTTP session and LLM client of the current watcher
    clients: list = []

    def build_watcher(current: Config) -> FeedWatcher:
        while clients:
            clients.pop().close()

        http = HttpClient(current.http)
        llm_client = http.build_llm_client(
            current.llm.endpoint,
            current.llm.api_key,
            max(current.llm.filter_timeout, current.llm.summary_timeout),
        )
        clients.extend([http, llm_client])
        classifier = RelevanceClassifier(
            llm_client,
            current.llm,
            current.include,
            current.exclude,
            llm_slot=http.llm_slot,
        )
        return FeedWatcher(
            current.sources,
            http.get,
            cache,
            classifier,
            present_relevant_item,
            fetch_workers=current.http.fetch_concurrency,
        )

    # The already-validated first config is reused for cycle one
    initial = [config]

    def reload_config() -> Config:
        if initial:
            return initial.pop()
        return load_config(args.config)

    scheduler = Scheduler(reload_config, build_watcher, Ticker())

    def _handle_signal(signum, frame) -> None:
        logger.info("Received signal %d, finishing current cycle", signum)
        scheduler.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        scheduler.run(max_cycles=1 if args.once else None)
    finally:
        for client in clients:
            client.close()
        cache.close()


if __name__ == "__main__":
    main()
