"""RSS/Atom feed fetching."""

import logging
from datetime import datetime, timezone, timedelta
from typing import Callable

import feedparser
from dateutil.parser import parse as parse_date

from common.errors import ParseError
from fetch_items.alerts import is_alert_expired
from fetch_items.clean import clean_text, is_link_list
from fetch_items.models import FeedItem, Source

logger = logging.getLogger(__name__)

# Timezone abbreviations for date parsing
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
    "BRT": timezone(timedelta(hours=-3)),
}


def fetch_rss_items(source: Source, fetch: Callable[[str], bytes]) -> list[FeedItem]:
    """Fetch a source's feed and return its items in document order.

    Raises:
        FetchError: If the feed cannot be downloaded (after retries).
        ParseError: If the document is not a readable RSS/Atom feed.
    """
    content = fetch(source.url)
    return parse_feed(content, source)


def parse_feed(content: bytes, source: Source) -> list[FeedItem]:
    """Parse feed bytes into FeedItems, skipping entries that cannot be used."""
    feed = feedparser.parse(content)

    if feed.bozo and not feed.entries:
        raise ParseError(f"Malformed feed {source.url}: {feed.get('bozo_exception')}")

    items = []
    seen_urls: set[str] = set()
    for entry in feed.entries:
        try:
            item = _parse_entry(entry, source, seen_urls)
            if item is not None:
                items.append(item)
        except Exception as e:
            logger.warning("Failed to parse entry in %s: %s", source.name, e)
            continue

    return items


def _parse_entry(entry, source: Source, seen_urls: set) -> FeedItem | None:
    """Parse a single feed entry into a FeedItem."""
    url = (entry.get("link") or "").strip()
    if not url or url in seen_urls:
        return None

    raw_description = _raw_description(entry)
    published_at = _parse_published_date(entry)

    if is_link_list(raw_description):
        excerpt = ""
    else:
        excerpt = clean_text(raw_description) or ""

    title = clean_text(entry.get("title")) or url

    expired = False
    if source.expire_alerts:
        expired = is_alert_expired(raw_description, published_at)

    seen_urls.add(url)

    return FeedItem(
        url=url,
        title=title,
        published_at=published_at,
        excerpt=excerpt,
        source=source.name,
        expired=expired,
    )


def _raw_description(entry) -> str:
    """Prefer full content over the summary/description field."""
    content = entry.get("content")
    if content:
        value = content[0].get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description") or ""


def _parse_published_date(entry) -> datetime | None:
    """Extract and parse the published date from a feed entry."""
    published = entry.get("published") or entry.get("updated")
    if not published:
        return None

    try:
        dt = parse_date(published, tzinfos=TZINFOS)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except Exception:
        return None
