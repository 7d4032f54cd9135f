"""Data models for classify_items pipeline stage."""

from dataclasses import dataclass
from typing import Optional

from classify_items.instructions import (
    FILTER_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    SUMMARY_USER_TEMPLATE,
)


@dataclass(frozen=True)
class LlmSettings:
    """Model, sampling and prompt settings for the local LLM endpoint."""
    endpoint: str
    model: str
    api_key: str = "not-needed"
    filter_max_tokens: int = 5
    filter_temperature: float = 0.0
    summary_max_tokens: int = 300
    summary_temperature: float = 0.3
    filter_system_prompt: str = FILTER_SYSTEM_PROMPT
    summary_system_prompt: str = SUMMARY_SYSTEM_PROMPT
    summary_user_template: str = SUMMARY_USER_TEMPLATE
    filter_timeout: float = 10.0
    summary_timeout: float = 30.0
    show_latency: bool = False


@dataclass(frozen=True)
class ClassificationResult:
    """Relevance verdict for one item, with a summary when relevant."""
    is_relevant: bool
    summary: Optional[str] = None
