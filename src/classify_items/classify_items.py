"""Core relevance classification logic."""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Sequence

from openai import OpenAIError

from classify_items.instructions import FILTER_USER_TEMPLATE
from classify_items.models import ClassificationResult, LlmSettings
from classify_items.parse_verdict import parse_verdict
from common.errors import ClassifyError
from fetch_items.models import FeedItem

logger = logging.getLogger(__name__)

EMPTY_SUMMARY = "[empty summary]"


def build_filter_prompt(item: FeedItem, include: Sequence[str], exclude: Sequence[str]) -> str:
    """Build the yes/no relevance prompt for an item.

    The item is relevant when it is primarily about at least one inclusion
    topic and relates to none of the exclusion terms.
    """
    return FILTER_USER_TEMPLATE.format(
        title=item.title,
        description=item.excerpt,
        include=", ".join(include),
        exclude=", ".join(exclude),
    )


def build_summary_prompt(item: FeedItem, template: str) -> str:
    """Fill the summary template, appending title/description it does not place."""
    try:
        prompt = template.format(title=item.title, description=item.excerpt)
    except (KeyError, IndexError, ValueError) as e:
        logger.warning("Invalid summary template, using it verbatim: %s", e)
        prompt = template

    if "{title}" not in template:
        prompt = f"{prompt} {item.title}"
    if "{description}" not in template:
        prompt = f"{prompt} {item.excerpt}"
    return prompt.strip()


class RelevanceClassifier:
    """Binary relevance filter backed by an OpenAI-compatible chat endpoint.

    Args:
        client: OpenAI SDK client (or anything exposing chat.completions.create)
        settings: Model, sampling and prompt settings
        include: Inclusion topics (any one is enough)
        exclude: Exclusion terms (any one rules the item out)
        llm_slot: Callable returning a context manager that bounds concurrent
            model calls, e.g. HttpClient.llm_slot
    """

    def __init__(
        self,
        client: Any,
        settings: LlmSettings,
        include: Sequence[str],
        exclude: Sequence[str],
        llm_slot: Callable[[], ContextManager] | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.include = list(include)
        self.exclude = list(exclude)
        self._llm_slot = llm_slot or nullcontext

    def _complete(
        self,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> str:
        try:
            with self._llm_slot():
                response = self.client.chat.completions.create(
                    model=self.settings.model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    max_tokens=max_tokens,
                    temperature=temperature,
                    timeout=timeout,
                    stream=False,
                )
        except OpenAIError as exc:
            raise ClassifyError(f"LLM request to {self.settings.endpoint} failed: {exc}") from exc

        if not response or not response.choices:
            raise ClassifyError(f"LLM at {self.settings.endpoint} returned no choices")
        return response.choices[0].message.content or ""

    def is_relevant(self, item: FeedItem) -> bool:
        """Ask the model for a 1/0 verdict.

        Raises:
            ClassifyError: If the model is unreachable or the reply has no verdict.
        """
        start = time.monotonic()
        content = self._complete(
            self.settings.filter_system_prompt,
            build_filter_prompt(item, self.include, self.exclude),
            self.settings.filter_max_tokens,
            self.settings.filter_temperature,
            self.settings.filter_timeout,
        )
        elapsed = time.monotonic() - start
        logger.log(
            logging.INFO if self.settings.show_latency else logging.DEBUG,
            "Filter latency %.2fs (%d chars) for %s",
            elapsed, len(content), item.url,
        )

        verdict = parse_verdict(content)
        if verdict is None:
            raise ClassifyError(f"Unparseable verdict {content.strip()!r} for {item.url}")
        return verdict

    def summarize(self, item: FeedItem) -> str:
        """Ask the model for a short summary, returned verbatim (stripped)."""
        content = self._complete(
            self.settings.summary_system_prompt,
            build_summary_prompt(item, self.settings.summary_user_template),
            self.settings.summary_max_tokens,
            self.settings.summary_temperature,
            self.settings.summary_timeout,
        )
        return content.strip() or EMPTY_SUMMARY

    def classify(self, item: FeedItem) -> ClassificationResult:
        """Classify an item and summarize it when relevant.

        A failed summary keeps the verdict and leaves the summary empty.

        Raises:
            ClassifyError: If no verdict could be obtained.
        """
        if not self.is_relevant(item):
            return ClassificationResult(is_relevant=False)

        try:
            summary = self.summarize(item)
        except ClassifyError as e:
            logger.warning("Summary failed for %s: %s", item.url, e)
            summary = None

        return ClassificationResult(is_relevant=True, summary=summary)
