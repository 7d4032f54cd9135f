"""Text cleanup for feed titles and excerpts."""

import html
import re
from typing import Optional
from urllib.parse import urlsplit


def clean_text(text: Optional[str]) -> Optional[str]:
    """Clean text by stripping HTML, unescaping entities, and collapsing whitespace."""
    if not text:
        return None
    # Strip HTML tags (keep text content)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    # Remove escaped quotes
    text = text.replace('\\"', '"')
    # Collapse whitespace
    text = re.sub(r"\s+", " ", text).strip()
    return text if text else None


def is_link_list(text: Optional[str]) -> bool:
    """True for aggregator descriptions that are only an ordered list of links."""
    return bool(text) and text.lstrip().lower().startswith("<ol>")


def title_from_url(url: str) -> str:
    """Derive a readable title from the last path segment of a URL."""
    slug = urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1]
    slug = re.sub(r"\.(s?html?|php|aspx?)$", "", slug, flags=re.IGNORECASE)
    words = re.sub(r"[-_+]+", " ", slug).strip()
    # Bare ids and empty slugs say nothing about the article
    if not words or words.isdigit():
        return url
    return words
