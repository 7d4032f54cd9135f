"""Cycle/sleep loop around the feed watcher."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from common.errors import ConfigError
from watch_feeds.config import Config
from watch_feeds.watch_feeds import FeedWatcher

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    CYCLING = "cycling"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class Ticker:
    """Interruptible sleep between cycles."""

    def __init__(self, stop_event: Optional[threading.Event] = None) -> None:
        self._stop_event = stop_event or threading.Event()

    def wait(self, seconds: float) -> bool:
        """Sleep for ``seconds``. Returns False if stopped before or during the wait."""
        if self._stop_event.is_set():
            return False
        return not self._stop_event.wait(seconds)

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()


class Scheduler:
    """Runs a cycle, sleeps for the configured interval, and repeats.

    The configuration is reloaded before every cycle. A reload that fails keeps
    the previous configuration, and the watcher is only rebuilt when the loaded
    configuration differs from the one it was built with.
    """

    def __init__(
        self,
        load_config: Callable[[], Config],
        build_watcher: Callable[[Config], FeedWatcher],
        ticker: Optional[Ticker] = None,
    ) -> None:
        self.load_config = load_config
        self.build_watcher = build_watcher
        self.ticker = ticker or Ticker()
        self.state = SchedulerState.SLEEPING
        self.config: Optional[Config] = None
        self.watcher: Optional[FeedWatcher] = None

    def _refresh(self) -> None:
        try:
            config = self.load_config()
        except ConfigError as e:
            if self.config is None:
                raise
            logger.error("Config reload failed, keeping previous config: %s", e)
            return

        if config == self.config and self.watcher is not None:
            return

        if self.config is not None:
            if config.interval_minutes != self.config.interval_minutes:
                logger.info(
                    "Poll interval changed from %d to %d minutes",
                    self.config.interval_minutes,
                    config.interval_minutes,
                )
            logger.info("Configuration changed, rebuilding watcher")

        self.watcher = self.build_watcher(config)
        self.config = config

    def run(self, max_cycles: Optional[int] = None) -> int:
        """Run cycles until stopped (or ``max_cycles`` is reached).

        Returns:
            Number of cycles started.

        Raises:
            ConfigError: If the very first configuration load fails.
        """
        cycles = 0
        while not self.ticker.stopped:
            self.state = SchedulerState.CYCLING
            self._refresh()
            cycles += 1
            logger.info("Starting cycle %d", cycles)
            try:
                self.watcher.run_cycle()
            except Exception as e:
                logger.exception("Cycle %d failed: %s", cycles, e)

            if max_cycles is not None and cycles >= max_cycles:
                break

            self.state = SchedulerState.SLEEPING
            logger.info("Sleeping %d minutes until next cycle", self.config.interval_minutes)
            if not self.ticker.wait(self.config.interval_seconds):
                break

        self.state = SchedulerState.STOPPED
        logger.info("Scheduler stopped after %d cycles", cycles)
        return cycles

    def stop(self) -> None:
        """Let the in-flight cycle finish, then exit without sleeping again."""
        logger.info("Stop requested")
        self.ticker.stop()
