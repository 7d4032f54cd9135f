"""Data models for dedup_cache."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Verdict(str, Enum):
    RELEVANT = "relevant"
    IRRELEVANT = "irrelevant"


@dataclass(frozen=True)
class CacheRecord:
    """Committed classification outcome for one fingerprint."""
    fingerprint: str
    verdict: Verdict
    recorded_at: datetime
    summary: Optional[str] = None
    url: Optional[str] = None
