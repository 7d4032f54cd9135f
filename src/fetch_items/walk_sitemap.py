"""Sitemap and sitemap-index resolution.

A sitemap is either a ``<urlset>`` listing page URLs or a ``<sitemapindex>``
listing further sitemaps. ``walk_sitemap`` resolves an index into its leaf page
URLs with an explicit worklist and a visited set, so every distinct sitemap
document is downloaded at most once and cyclic references terminate.
"""

from __future__ import annotations

import gzip
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Iterator

from dateutil.parser import parse as parse_date
from lxml import etree

from common.errors import FetchError, ParseError
from common.hashing import normalize_url
from fetch_items.clean import clean_text, title_from_url
from fetch_items.models import FeedItem, SitemapDocument, SitemapEntry, Source

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def _make_parser() -> etree.XMLParser:
    # lxml parsers must not be shared between threads
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        huge_tree=True,
    )


def _local_name(element) -> str:
    return etree.QName(element).localname


def _child_text(element, name: str) -> str | None:
    """Text of the first direct child whose local name matches, ignoring namespaces."""
    for child in element:
        if not isinstance(child.tag, str):
            continue
        if _local_name(child) == name and child.text and child.text.strip():
            return child.text.strip()
    return None


def _news_text(element, name: str) -> str | None:
    """Text of a field inside the Google News <news:news> extension block."""
    for child in element:
        if isinstance(child.tag, str) and _local_name(child) == "news":
            return _child_text(child, name)
    return None


def _parse_lastmod(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = parse_date(value)
    except (ValueError, OverflowError):
        logger.debug("Ignoring unparseable lastmod %r", value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_sitemap(content: bytes) -> SitemapDocument:
    """Parse one sitemap or sitemap index document.

    Raises:
        ParseError: If the payload is not XML or not a sitemap.
    """
    if content[:2] == GZIP_MAGIC:
        try:
            content = gzip.decompress(content)
        except (OSError, EOFError) as exc:
            raise ParseError(f"Corrupt gzip sitemap: {exc}") from exc

    try:
        root = etree.fromstring(content, parser=_make_parser())
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise ParseError(f"Invalid sitemap XML: {exc}") from exc
    if root is None:
        raise ParseError("Empty sitemap document")

    kind = _local_name(root)
    document = SitemapDocument()

    if kind == "sitemapindex":
        for node in root:
            if not isinstance(node.tag, str) or _local_name(node) != "sitemap":
                continue
            loc = _child_text(node, "loc")
            if not loc:
                logger.warning("Skipping <sitemap> entry without <loc>")
                continue
            document.children.append(loc)

    elif kind == "urlset":
        for node in root:
            if not isinstance(node.tag, str) or _local_name(node) != "url":
                continue
            loc = _child_text(node, "loc")
            if not loc:
                logger.warning("Skipping <url> entry without <loc>")
                continue
            lastmod = _parse_lastmod(
                _child_text(node, "lastmod") or _news_text(node, "publication_date")
            )
            document.entries.append(
                SitemapEntry(url=loc, lastmod=lastmod, title=_news_text(node, "title"))
            )

    else:
        raise ParseError(f"Unexpected sitemap root element <{kind}>")

    return document


def walk_sitemap(root_url: str, fetch: Callable[[str], bytes]) -> Iterator[SitemapEntry]:
    """Lazily yield every distinct leaf entry reachable from a root sitemap.

    A document that fails to download or parse is logged and skipped; the rest
    of the walk continues.
    """
    worklist = deque([root_url])
    visited: set[str] = set()
    seen_urls: set[str] = set()

    while worklist:
        sitemap_url = worklist.popleft()
        try:
            key = normalize_url(sitemap_url)
        except ValueError as e:
            logger.warning("Skipping malformed sitemap URL %r: %s", sitemap_url, e)
            continue
        if key in visited:
            logger.debug("Already visited sitemap %s", sitemap_url)
            continue
        visited.add(key)

        logger.info("Fetching sitemap %s", sitemap_url)
        try:
            document = parse_sitemap(fetch(sitemap_url))
        except (FetchError, ParseError) as e:
            logger.error("Skipping sitemap %s: %s", sitemap_url, e)
            continue

        worklist.extend(document.children)

        for entry in document.entries:
            try:
                url_key = normalize_url(entry.url)
            except ValueError as e:
                logger.warning("Skipping malformed URL %r in %s: %s", entry.url, sitemap_url, e)
                continue
            if url_key in seen_urls:
                continue
            seen_urls.add(url_key)
            yield entry

    logger.info("Resolved %d sitemap documents from %s", len(visited), root_url)


def entry_to_item(entry: SitemapEntry, source: Source) -> FeedItem:
    """Convert a sitemap leaf into a FeedItem for classification."""
    title = clean_text(entry.title) or title_from_url(entry.url)
    return FeedItem(
        url=entry.url,
        title=title,
        published_at=entry.lastmod,
        excerpt="",
        source=source.name,
    )
