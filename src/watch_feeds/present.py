"""Presentation of relevant items."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

NO_SUMMARY = "(no summary)"


def present_relevant_item(title: str, url: str, summary: Optional[str]) -> None:
    logger.info(
        "RELEVANT ITEM\n  Title:   %s\n  Link:    %s\n  Summary: %s",
        title,
        url,
        summary or NO_SUMMARY,
    )
