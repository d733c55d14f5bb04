"""Parse raw browser history rows and merge them into one ordered set."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from history_sync.browser.models import BrowserType, HistoryItem
from history_sync.utils import domain_of, is_internal_url

logger = logging.getLogger(__name__)


def parse_row(
    raw: dict,
    browser: BrowserType,
    profile: str,
    to_epoch_millis: Callable[[int], int],
) -> HistoryItem | None:
    """Normalize one raw row; returns None for internal, unusable or malformed rows."""
    url = raw.get("url")
    if not isinstance(url, str):
        return None
    url = url.strip()
    if not url or is_internal_url(url):
        return None

    last_visit = raw.get("last_visit")
    if last_visit is None:
        return None

    try:
        last_visit_ms = to_epoch_millis(last_visit)
        visit_count = max(0, int(raw.get("visit_count") or 0))
    except (TypeError, ValueError) as e:
        logger.debug("Skipping malformed %s row for %s: %s", browser.value, url, e)
        return None

    return HistoryItem(
        browser=browser,
        profile=profile,
        url=url,
        title=str(raw.get("title") or ""),
        last_visit=last_visit_ms,
        visit_count=visit_count,
        domain=domain_of(url),
    )


def merge_and_dedup(items: Iterable[HistoryItem]) -> list[HistoryItem]:
    """Keep the most recent item per URL, most recent first.

    Idempotent: applying it to its own output returns the same list.
    """
    latest: dict[str, HistoryItem] = {}
    for item in items:
        current = latest.get(item.url)
        if current is None or item.last_visit > current.last_visit:
            latest[item.url] = item
    return sorted(latest.values(), key=lambda i: i.last_visit, reverse=True)
