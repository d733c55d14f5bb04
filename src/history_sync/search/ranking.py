"""Fuzzy multi-token ranking of history items."""

from __future__ import annotations

import re
from typing import Sequence

from history_sync.browser.models import HistoryItem
from history_sync.utils import MILLIS_PER_DAY

FIRST_TOKEN_IMPORTANCE = 100
OTHER_TOKEN_IMPORTANCE = 35

DOMAIN_WEIGHT = 5
URL_WEIGHT = 3
TITLE_WEIGHT = 1

ORDER_BONUS = 150
SEARCH_URL_PENALTY = 0.7
MAX_VISIT_BONUS = 50

SEARCH_PARAM_MARKERS = ("?q=", "&q=", "?search=", "&search=", "?query=", "&query=")

_WHITESPACE_RE = re.compile(r"\s+")


def tokenize(query: str) -> list[str]:
    """Lowercase whitespace-separated terms, empties dropped."""
    return [t for t in _WHITESPACE_RE.split(query.strip().lower()) if t]


def field_score(field: str, token: str, base: int) -> int:
    idx = field.find(token)
    if idx < 0:
        return 0
    score = base
    if idx == 0:
        score += base // 2
    # Earlier matches score higher; bonus bottoms out after 100 characters.
    score += max(base // 4, 1) * (10 - min(idx // 10, 10))
    return score


def has_search_params(url: str) -> bool:
    return any(marker in url for marker in SEARCH_PARAM_MARKERS)


def tokens_in_order(url: str, tokens: Sequence[str]) -> bool:
    last_idx = -1
    for token in tokens:
        idx = url.find(token)
        if idx < 0 or idx < last_idx:
            return False
        last_idx = idx
    return True


def matches(item: HistoryItem, tokens: Sequence[str]) -> bool:
    """Every token must appear in the title, URL or domain."""
    title = item.title.lower()
    url = item.url.lower()
    domain = item.domain.lower()
    return all(t in title or t in url or t in domain for t in tokens)


def score(item: HistoryItem, tokens: Sequence[str]) -> int:
    """Relevance of a qualifying item; higher is better."""
    title = item.title.lower()
    url = item.url.lower()
    domain = item.domain.lower()

    total = 0
    for idx, token in enumerate(tokens):
        importance = FIRST_TOKEN_IMPORTANCE if idx == 0 else OTHER_TOKEN_IMPORTANCE
        total += max(
            field_score(domain, token, importance * DOMAIN_WEIGHT),
            field_score(url, token, importance * URL_WEIGHT),
            field_score(title, token, importance * TITLE_WEIGHT),
        )

    if len(tokens) >= 2 and tokens_in_order(url, tokens):
        total += ORDER_BONUS

    if has_search_params(url):
        total = int(total * SEARCH_URL_PENALTY)

    total += min(item.visit_count, MAX_VISIT_BONUS)
    # Stable within a week; only separates otherwise equal scores.
    total += (item.last_visit // MILLIS_PER_DAY) % 7
    return total


def rank(items: Sequence[HistoryItem], query: str) -> list[HistoryItem]:
    """Filter and order ``items`` for ``query``.

    An empty query returns the items unchanged. Otherwise only items containing
    every token qualify, ordered by score, then last visit, then visit count.
    """
    tokens = tokenize(query)
    if not tokens:
        return list(items)

    scored = [(score(item, tokens), item) for item in items if matches(item, tokens)]
    scored.sort(key=lambda pair: (pair[0], pair[1].last_visit, pair[1].visit_count), reverse=True)
    return [item for _, item in scored]
