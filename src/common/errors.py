"""Error taxonomy shared by every pipeline stage."""

from __future__ import annotations


class FilterFlowError(Exception):
    """Base class for all FilterFlow errors."""


class FetchError(FilterFlowError):
    """Raised when a feed, sitemap or page cannot be downloaded."""

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class ParseError(FilterFlowError):
    """Raised when a downloaded feed or sitemap document is malformed."""


class ClassifyError(FilterFlowError):
    """Raised when the LLM is unreachable or its reply cannot be interpreted."""


class CacheError(FilterFlowError):
    """Raised when the dedup cache cannot be read or written."""


class ConfigError(FilterFlowError):
    """Raised when the configuration file is missing or invalid."""
