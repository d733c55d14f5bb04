"""Tests for row parsing and merge/dedup."""

import random

from history_sync.browser.models import BrowserType, HistoryItem
from history_sync.browser.parser import merge_and_dedup, parse_row
from history_sync.utils import chrome_to_epoch_millis, gecko_to_epoch_millis


def test_parse_valid_row():
    raw = {
        "url": "https://www.github.com/openai",
        "title": "GitHub",
        "last_visit": 13284276800000000,
        "visit_count": 42,
    }
    result = parse_row(raw, BrowserType.CHROME, "Default", chrome_to_epoch_millis)
    assert isinstance(result, HistoryItem)
    assert result.domain == "github.com"
    assert result.visit_count == 42
    assert result.profile == "Default"
    assert result.last_visit == chrome_to_epoch_millis(13284276800000000)
    assert result.favicon is None


def test_parse_filters_internal_url():
    raw = {"url": "chrome://settings", "title": "Settings", "last_visit": 1, "visit_count": 1}
    assert parse_row(raw, BrowserType.CHROME, "Default", chrome_to_epoch_millis) is None


def test_parse_null_title_and_count():
    raw = {"url": "https://example.com", "title": None, "last_visit": 1700000000000000, "visit_count": None}
    result = parse_row(raw, BrowserType.ZEN, "abc.default", gecko_to_epoch_millis)
    assert result is not None
    assert result.title == ""
    assert result.visit_count == 0
    assert result.last_visit == 1700000000000


def test_parse_empty_url():
    raw = {"url": "", "title": "x", "last_visit": 1, "visit_count": 1}
    assert parse_row(raw, BrowserType.CHROME, "Default", chrome_to_epoch_millis) is None


def test_dedup_keeps_most_recent(make_item):
    older = make_item(url="https://a.com", title="old", last_visit=1000)
    newer = make_item(url="https://a.com", title="new", last_visit=2000, browser=BrowserType.ZEN)
    merged = merge_and_dedup([older, newer])
    assert merged == [newer]


def test_dedup_sorts_by_recency(make_item):
    items = [
        make_item(url="https://a.com", last_visit=10),
        make_item(url="https://b.com", last_visit=30),
        make_item(url="https://c.com", last_visit=20),
    ]
    merged = merge_and_dedup(items)
    assert [i.url for i in merged] == ["https://b.com", "https://c.com", "https://a.com"]


def test_dedup_is_idempotent(make_item):
    rng = random.Random(7)
    items = [
        make_item(url=f"https://site{rng.randint(0, 9)}.com", last_visit=rng.randint(0, 5))
        for _ in range(50)
    ]
    once = merge_and_dedup(items)
    assert merge_and_dedup(once) == once
    assert len({i.url for i in once}) == len(once)


def test_dedup_empty():
    assert merge_and_dedup([]) == []


def test_parse_malformed_values_are_skipped():
    bad_visit = {"url": "https://a.com", "title": "A", "last_visit": "not-a-number", "visit_count": 1}
    bad_count = {"url": "https://b.com", "title": "B", "last_visit": 13284276800000000, "visit_count": "many"}
    bad_url = {"url": b"https://c.com", "title": "C", "last_visit": 13284276800000000, "visit_count": 1}
    for raw in (bad_visit, bad_count, bad_url):
        assert parse_row(raw, BrowserType.CHROME, "Default", chrome_to_epoch_millis) is None
