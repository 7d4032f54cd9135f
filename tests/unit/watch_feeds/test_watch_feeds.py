"""Tests for watch_feeds.watch_feeds module."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from classify_items.models import ClassificationResult
from common.errors import CacheError, ClassifyError, FetchError
from common.hashing import generate_fingerprint
from dedup_cache.dedup_cache import DedupCache
from dedup_cache.models import CacheRecord, Verdict
from fetch_items.models import FeedItem, SitemapEntry, Source, SourceKind
from watch_feeds.watch_feeds import FeedWatcher, ItemOutcome

RSS = Source("Feed", "https://example.com/rss", SourceKind.RSS)
SITEMAP = Source("Map", "https://example.com/sitemap.xml", SourceKind.SITEMAP)


def _item(url: str, title: str = "Title", expired: bool = False) -> FeedItem:
    return FeedItem(url=url, title=title, published_at=None, excerpt="", expired=expired)


def _watcher(cache, classifier=None, present=None, sources=(RSS,)) -> FeedWatcher:
    return FeedWatcher(
        list(sources),
        fetch=MagicMock(),
        cache=cache,
        classifier=classifier or MagicMock(),
        present=present or MagicMock(),
        fetch_workers=2,
    )


@pytest.fixture
def cache(tmp_path):
    with DedupCache(tmp_path / "cache") as cache:
        yield cache


class TestProcessItem:
    def test_relevant_item_is_recorded_then_presented(self, cache) -> None:
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(True, "Resumo")
        presented = []

        def present(title, url, summary) -> None:
            # The verdict must already be committed when presenting
            presented.append(cache.get(generate_fingerprint(url)))

        watcher = _watcher(cache, classifier, present)
        outcome = watcher.process_item(_item("https://example.com/1", "Juros"))

        assert outcome == ItemOutcome.RELEVANT
        record = cache.get(generate_fingerprint("https://example.com/1"))
        assert record.verdict == Verdict.RELEVANT
        assert record.summary == "Resumo"
        assert presented == [record]

    def test_irrelevant_item_is_recorded_not_presented(self, cache) -> None:
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(False)
        present = MagicMock()

        outcome = _watcher(cache, classifier, present).process_item(_item("https://example.com/1"))

        assert outcome == ItemOutcome.IRRELEVANT
        assert cache.get(generate_fingerprint("https://example.com/1")).verdict == Verdict.IRRELEVANT
        present.assert_not_called()

    def test_cached_item_is_never_reclassified(self, cache) -> None:
        fingerprint = generate_fingerprint("https://example.com/1")
        cache.put(
            fingerprint,
            CacheRecord(fingerprint, Verdict.IRRELEVANT, datetime.now(timezone.utc)),
        )
        classifier = MagicMock()
        present = MagicMock()
        watcher = _watcher(cache, classifier, present)

        assert watcher.process_item(_item("https://example.com/1")) == ItemOutcome.CACHED
        assert watcher.process_item(_item("https://example.com/1?utm_source=rss")) == ItemOutcome.CACHED
        classifier.classify.assert_not_called()
        present.assert_not_called()

    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_unclassifiable_item_is_deferred_and_retried(self, mock_fetch_rss, cache) -> None:
        item = _item("https://example.com/1")
        mock_fetch_rss.return_value = [item]
        classifier = MagicMock()
        classifier.classify.side_effect = [
            ClassifyError("Unparseable verdict 'maybe'"),
            ClassificationResult(True, None),
        ]
        present = MagicMock()
        watcher = _watcher(cache, classifier, present)

        first = watcher.run_cycle()
        assert first.deferred == 1
        assert cache.get(generate_fingerprint(item.url)) is None
        present.assert_not_called()

        second = watcher.run_cycle()
        assert second.relevant == 1
        present.assert_called_once_with("Title", "https://example.com/1", None)

    def test_expired_alert_is_recorded_without_classifier(self, cache) -> None:
        classifier = MagicMock()
        outcome = _watcher(cache, classifier).process_item(
            _item("https://example.com/alert", expired=True)
        )
        assert outcome == ItemOutcome.IRRELEVANT
        assert cache.get(generate_fingerprint("https://example.com/alert")).verdict == Verdict.IRRELEVANT
        classifier.classify.assert_not_called()

    def test_cache_read_failure_defers(self) -> None:
        cache = MagicMock()
        cache.get.side_effect = CacheError("locked")
        classifier = MagicMock()
        outcome = _watcher(cache, classifier).process_item(_item("https://example.com/1"))
        assert outcome == ItemOutcome.DEFERRED
        classifier.classify.assert_not_called()

    def test_cache_write_failure_defers_without_presenting(self) -> None:
        cache = MagicMock()
        cache.get.return_value = None
        cache.put.side_effect = CacheError("disk full")
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(True, "Resumo")
        present = MagicMock()

        outcome = _watcher(cache, classifier, present).process_item(_item("https://example.com/1"))

        assert outcome == ItemOutcome.DEFERRED
        present.assert_not_called()

    def test_same_item_claimed_once_per_cycle(self) -> None:
        # Lookups miss, as when a second source races the first write
        cache = MagicMock()
        cache.get.return_value = None
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(False)
        watcher = _watcher(cache, classifier)

        watcher.process_item(_item("https://example.com/1"))
        assert watcher.process_item(_item("https://example.com/1")) == ItemOutcome.CACHED
        assert classifier.classify.call_count == 1

    def test_deferred_item_can_be_retried_by_duplicate_in_same_cycle(self) -> None:
        cache = MagicMock()
        cache.get.return_value = None
        classifier = MagicMock()
        classifier.classify.side_effect = [
            ClassifyError("LLM request failed"),
            ClassificationResult(True, "Resumo"),
        ]
        present = MagicMock()
        watcher = _watcher(cache, classifier, present)

        assert watcher.process_item(_item("https://example.com/1")) == ItemOutcome.DEFERRED
        assert watcher.process_item(_item("https://example.com/1")) == ItemOutcome.RELEVANT
        assert classifier.classify.call_count == 2
        present.assert_called_once_with("Title", "https://example.com/1", "Resumo")

    def test_failed_write_releases_claim(self) -> None:
        cache = MagicMock()
        cache.get.return_value = None
        cache.put.side_effect = [CacheError("disk full"), None]
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(False)
        watcher = _watcher(cache, classifier)

        assert watcher.process_item(_item("https://example.com/1")) == ItemOutcome.DEFERRED
        assert watcher.process_item(_item("https://example.com/1")) == ItemOutcome.IRRELEVANT
        assert cache.put.call_count == 2

    def test_malformed_port_is_processed(self, cache) -> None:
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(False)
        outcome = _watcher(cache, classifier).process_item(_item("https://a.com:abc/x"))
        assert outcome == ItemOutcome.IRRELEVANT


class TestIterItems:
    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_rss_source_uses_feed_fetcher(self, mock_fetch_rss, cache) -> None:
        mock_fetch_rss.return_value = [_item("https://example.com/1")]
        watcher = _watcher(cache)
        assert [i.url for i in watcher.iter_items(RSS)] == ["https://example.com/1"]
        mock_fetch_rss.assert_called_once_with(RSS, watcher.fetch)

    @patch("watch_feeds.watch_feeds.walk_sitemap")
    def test_sitemap_source_converts_entries(self, mock_walk, cache) -> None:
        mock_walk.return_value = iter([SitemapEntry("https://example.com/juros-sobem")])
        watcher = _watcher(cache, sources=(SITEMAP,))
        items = list(watcher.iter_items(SITEMAP))
        assert items[0].title == "juros sobem"
        assert items[0].source == "Map"
        mock_walk.assert_called_once_with(SITEMAP.url, watcher.fetch)


class TestRunCycle:
    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_second_cycle_makes_no_classifier_calls(self, mock_fetch_rss, cache) -> None:
        mock_fetch_rss.return_value = [_item("https://example.com/1"), _item("https://example.com/2")]
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(False)
        watcher = _watcher(cache, classifier)

        first = watcher.run_cycle()
        second = watcher.run_cycle()

        assert first.irrelevant == 2
        assert second.cached == 2
        assert second.items == 2
        assert classifier.classify.call_count == 2

    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_failed_source_does_not_abort_cycle(self, mock_fetch_rss, cache) -> None:
        other = Source("Other", "https://other.com/rss", SourceKind.RSS)

        def fetch_rss(source, fetch):
            if source is RSS:
                raise FetchError(source.url, "HTTP 503", status=503)
            return [_item("https://other.com/1")]

        mock_fetch_rss.side_effect = fetch_rss
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(True, "s")
        present = MagicMock()

        report = _watcher(cache, classifier, present, sources=(RSS, other)).run_cycle()

        assert report.sources == 2
        assert report.failed_sources == 1
        assert report.relevant == 1
        present.assert_called_once_with("Title", "https://other.com/1", "s")

    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_unexpected_error_counts_as_failed_source(self, mock_fetch_rss, cache) -> None:
        mock_fetch_rss.side_effect = RuntimeError("bug")
        report = _watcher(cache).run_cycle()
        assert report.failed_sources == 1
        assert report.items == 0

    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_shared_item_classified_once_across_sources(self, mock_fetch_rss, cache) -> None:
        other = Source("Other", "https://other.com/rss", SourceKind.RSS)
        mock_fetch_rss.return_value = [_item("https://example.com/shared")]
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(True, None)
        present = MagicMock()

        report = _watcher(cache, classifier, present, sources=(RSS, other)).run_cycle()

        assert classifier.classify.call_count == 1
        assert present.call_count == 1
        assert report.relevant == 1
        assert report.cached == 1


class TestProcessSource:
    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_unexpected_item_failure_does_not_stop_source(self, mock_fetch_rss, cache) -> None:
        mock_fetch_rss.return_value = [_item("https://a.com/bad"), _item("https://a.com/ok")]
        classifier = MagicMock()
        classifier.classify.side_effect = [RuntimeError("bug"), ClassificationResult(True, "s")]
        present = MagicMock()

        counts = _watcher(cache, classifier, present).process_source(RSS)

        assert counts[ItemOutcome.DEFERRED] == 1
        assert counts[ItemOutcome.RELEVANT] == 1
        assert counts["failed_source"] == 0
        assert cache.get(generate_fingerprint("https://a.com/bad")) is None
        present.assert_called_once_with("Title", "https://a.com/ok", "s")

    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_presenter_failure_does_not_stop_source(self, mock_fetch_rss, cache) -> None:
        mock_fetch_rss.return_value = [_item("https://a.com/1"), _item("https://a.com/2")]
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(True, None)
        present = MagicMock(side_effect=[OSError("broken pipe"), None])

        counts = _watcher(cache, classifier, present).process_source(RSS)

        assert classifier.classify.call_count == 2
        assert present.call_count == 2
        assert counts[ItemOutcome.RELEVANT] == 1
        assert counts[ItemOutcome.DEFERRED] == 1
        # The verdict was committed before presenting, so it is not re-offered
        assert cache.get(generate_fingerprint("https://a.com/1")).verdict == Verdict.RELEVANT

    @patch("watch_feeds.watch_feeds.fetch_rss_items")
    def test_malformed_link_does_not_stop_source(self, mock_fetch_rss, cache) -> None:
        mock_fetch_rss.return_value = [_item("https://a.com:abc/x"), _item("https://a.com/ok")]
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(False)

        report = _watcher(cache, classifier).run_cycle()

        assert classifier.classify.call_count == 2
        assert report.failed_sources == 0
        assert report.irrelevant == 2
