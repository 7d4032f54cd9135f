"""One polling cycle: fetch every source, classify new items, record verdicts."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, Optional, Sequence

from classify_items.classify_items import RelevanceClassifier
from common.errors import CacheError, ClassifyError, FetchError, ParseError
from common.hashing import generate_fingerprint
from dedup_cache.dedup_cache import DedupCache
from dedup_cache.models import CacheRecord, Verdict
from fetch_items.fetch_rss_items import fetch_rss_items
from fetch_items.models import FeedItem, Source, SourceKind
from fetch_items.walk_sitemap import entry_to_item, walk_sitemap

logger = logging.getLogger(__name__)

Presenter = Callable[[str, str, Optional[str]], None]

FAILED_SOURCE = "failed_source"


class ItemOutcome(str, Enum):
    CACHED = "cached"
    RELEVANT = "relevant"
    IRRELEVANT = "irrelevant"
    DEFERRED = "deferred"


@dataclass
class CycleReport:
    """Counters for one completed cycle."""
    sources: int = 0
    failed_sources: int = 0
    items: int = 0
    cached: int = 0
    relevant: int = 0
    irrelevant: int = 0
    deferred: int = 0
    elapsed_seconds: float = 0.0

    @classmethod
    def from_counter(cls, sources: int, counts: Counter, elapsed: float) -> CycleReport:
        return cls(
            sources=sources,
            failed_sources=counts[FAILED_SOURCE],
            items=sum(counts[outcome] for outcome in ItemOutcome),
            cached=counts[ItemOutcome.CACHED],
            relevant=counts[ItemOutcome.RELEVANT],
            irrelevant=counts[ItemOutcome.IRRELEVANT],
            deferred=counts[ItemOutcome.DEFERRED],
            elapsed_seconds=elapsed,
        )


class FeedWatcher:
    """Runs cycles over a fixed set of sources.

    Each item is fingerprinted and looked up in the dedup cache; only unseen
    items reach the classifier. A verdict is committed to the cache before a
    relevant item is presented, so an item is presented at most once. Classifier
    and cache failures defer the item: nothing is written and it is offered
    again next cycle.
    """

    def __init__(
        self,
        sources: Sequence[Source],
        fetch: Callable[[str], bytes],
        cache: DedupCache,
        classifier: RelevanceClassifier,
        present: Presenter,
        fetch_workers: int = 4,
    ) -> None:
        self.sources = list(sources)
        self.fetch = fetch
        self.cache = cache
        self.classifier = classifier
        self.present = present
        self.fetch_workers = max(1, fetch_workers)
        self._claimed: set[str] = set()
        self._claim_lock = threading.Lock()

    def iter_items(self, source: Source) -> Iterator[FeedItem]:
        if source.kind == SourceKind.SITEMAP:
            for entry in walk_sitemap(source.url, self.fetch):
                yield entry_to_item(entry, source)
        else:
            yield from fetch_rss_items(source, self.fetch)

    def _claim(self, fingerprint: str) -> bool:
        with self._claim_lock:
            if fingerprint in self._claimed:
                return False
            self._claimed.add(fingerprint)
            return True

    def _release(self, fingerprint: str) -> None:
        with self._claim_lock:
            self._claimed.discard(fingerprint)

    def process_item(self, item: FeedItem) -> ItemOutcome:
        fingerprint = generate_fingerprint(item.url)

        try:
            if self.cache.get(fingerprint) is not None:
                return ItemOutcome.CACHED
        except CacheError as e:
            logger.error("Cache lookup failed for %s: %s", item.url, e)
            return ItemOutcome.DEFERRED

        # Another source already handled this item in the current cycle
        if not self._claim(fingerprint):
            return ItemOutcome.CACHED

        # Nothing was recorded for a deferred item, so a duplicate may retry it
        try:
            outcome = self._classify_and_record(item, fingerprint)
        except Exception:
            self._release(fingerprint)
            raise
        if outcome == ItemOutcome.DEFERRED:
            self._release(fingerprint)
        return outcome

    def _classify_and_record(self, item: FeedItem, fingerprint: str) -> ItemOutcome:
        if item.expired:
            logger.debug("Expired alert %s, recording as irrelevant", item.url)
            is_relevant, summary = False, None
        else:
            try:
                result = self.classifier.classify(item)
            except ClassifyError as e:
                logger.warning("Could not classify %s, will retry next cycle: %s", item.url, e)
                return ItemOutcome.DEFERRED
            is_relevant, summary = result.is_relevant, result.summary

        record = CacheRecord(
            fingerprint=fingerprint,
            verdict=Verdict.RELEVANT if is_relevant else Verdict.IRRELEVANT,
            recorded_at=datetime.now(timezone.utc),
            summary=summary,
            url=item.url,
        )
        try:
            self.cache.put(fingerprint, record)
        except CacheError as e:
            logger.error("Could not record verdict for %s: %s", item.url, e)
            return ItemOutcome.DEFERRED

        if not is_relevant:
            return ItemOutcome.IRRELEVANT

        self.present(item.title, item.url, summary)
        return ItemOutcome.RELEVANT

    def process_source(self, source: Source) -> Counter:
        counts: Counter = Counter()
        try:
            for item in self.iter_items(source):
                try:
                    counts[self.process_item(item)] += 1
                except Exception as e:
                    logger.exception(
                        "Unexpected failure processing %s from %s: %s", item.url, source.name, e
                    )
                    counts[ItemOutcome.DEFERRED] += 1
        except (FetchError, ParseError) as e:
            logger.error("Source %s failed: %s", source.name, e)
            counts[FAILED_SOURCE] += 1

        logger.info(
            "Source %s: %d new relevant, %d new irrelevant, %d cached, %d deferred",
            source.name,
            counts[ItemOutcome.RELEVANT],
            counts[ItemOutcome.IRRELEVANT],
            counts[ItemOutcome.CACHED],
            counts[ItemOutcome.DEFERRED],
        )
        return counts

    def run_cycle(self) -> CycleReport:
        start = time.monotonic()
        with self._claim_lock:
            self._claimed = set()

        totals: Counter = Counter()
        with ThreadPoolExecutor(max_workers=self.fetch_workers) as executor:
            futures = {
                executor.submit(self.process_source, source): source
                for source in self.sources
            }
            for future in as_completed(futures):
                source = futures[future]
                try:
                    totals.update(future.result())
                except Exception as e:
                    logger.exception("Unexpected failure processing %s: %s", source.name, e)
                    totals[FAILED_SOURCE] += 1

        report = CycleReport.from_counter(len(self.sources), totals, time.monotonic() - start)
        logger.info(
            "Cycle done in %.1fs: %d sources (%d failed), %d items, "
            "%d relevant, %d irrelevant, %d cached, %d deferred",
            report.elapsed_seconds,
            report.sources,
            report.failed_sources,
            report.items,
            report.relevant,
            report.irrelevant,
            report.cached,
            report.deferred,
        )
        return report
