"""Lenient parsing of the model's 1/0 relevance answer."""

from __future__ import annotations

import re

# Reasoning models wrap their chain of thought in <think> tags, sometimes unclosed
THINK_BLOCK = re.compile(r"<think>.*?(?:</think>|$)", re.DOTALL | re.IGNORECASE)
VERDICT_TOKEN = re.compile(r"(?<![0-9A-Za-z])([01])(?![0-9A-Za-z])")
STRIP_CHARS = " \t\r\n\"'`*_.,;:!?()[]{}<>"


def parse_verdict(text: str | None) -> bool | None:
    """Return True for 1, False for 0, or None when no verdict can be found.

    Surrounding whitespace, quotes, markdown and punctuation are ignored and the
    first standalone 0 or 1 decides, so replies like "1", "**0**", "1." or
    "Answer: 1" all parse. Replies like "yes", "10" or "" do not.
    """
    if not text:
        return None

    text = THINK_BLOCK.sub(" ", text).strip(STRIP_CHARS)
    match = VERDICT_TOKEN.search(text)
    if match is None:
        return None
    return match.group(1) == "1"
