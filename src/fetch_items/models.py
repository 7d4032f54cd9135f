"""Data models for fetch_items pipeline stage."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SourceKind(str, Enum):
    RSS = "rss"
    SITEMAP = "sitemap"


@dataclass(frozen=True)
class Source:
    """A configured feed or sitemap to watch."""
    name: str
    url: str
    kind: SourceKind
    expire_alerts: bool = False


@dataclass
class FeedItem:
    """Candidate news item extracted from a feed entry or sitemap leaf."""
    url: str
    title: str
    published_at: Optional[datetime]
    excerpt: str
    source: str = ""
    expired: bool = False


@dataclass(frozen=True)
class SitemapEntry:
    """Leaf page URL declared by a sitemap, with its optional hints."""
    url: str
    lastmod: Optional[datetime] = None
    title: Optional[str] = None


@dataclass
class SitemapDocument:
    """One parsed sitemap: child sitemap URLs for an index, entries for a urlset."""
    children: list[str] = field(default_factory=list)
    entries: list[SitemapEntry] = field(default_factory=list)
