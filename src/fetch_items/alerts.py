"""Expiry checks for weather-alert feeds.

Alert feeds (e.g. the INMET CAP feed) describe each alert with an HTML table
whose "Fim" row holds the alert end time. Once that time has passed the alert
is no longer news, so it is recorded without asking the classifier.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

END_TIME_PATTERN = re.compile(r"Fim</th>.*?<td>(.*?)</td>", re.DOTALL | re.IGNORECASE)
MAX_ALERT_AGE = timedelta(hours=72)


def parse_alert_end(description: str | None) -> datetime | None:
    """Extract the alert end time (UTC) from a raw alert description."""
    if not description:
        return None

    match = END_TIME_PATTERN.search(description)
    if not match:
        return None

    raw = match.group(1).strip()
    value = raw.replace(" ", "T", 1)
    if value.endswith(".0"):
        value = value[:-2]
    try:
        end = datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Could not parse alert end time %r", raw)
        return None

    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return end


def is_alert_expired(
    description: str | None,
    published_at: datetime | None,
    now: datetime | None = None,
) -> bool:
    """Decide whether an alert item has expired.

    The end time from the description wins. Without one, an alert published
    more than 72 hours ago is expired. Missing or unparseable dates keep the
    alert valid.
    """
    now = now or datetime.now(timezone.utc)

    end = parse_alert_end(description)
    if end is not None:
        return end < now

    if published_at is None:
        return False
    return now - published_at > MAX_ALERT_AGE
