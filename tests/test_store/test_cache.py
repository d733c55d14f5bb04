"""Tests for the local cache store."""

import sqlite3
import threading

import pytest

from history_sync.browser.models import BrowserType
from history_sync.exceptions import CacheStoreError, CacheStoreInitError
from history_sync.favicons.models import Favicon
from history_sync.store.cache import CacheStore


def test_initialize_creates_schema(store):
    conn = sqlite3.connect(str(store.db_path))
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert {"history", "favicons", "tokens"} <= tables
    assert mode == "wal"


def test_initialize_is_idempotent(store, make_item):
    store.upsert_items([make_item()])
    again = CacheStore(store.db_path)
    again.initialize()
    assert again.counts() == (1, 0)
    again.close()


def test_initialize_failure_is_fatal(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")
    with pytest.raises(CacheStoreInitError):
        CacheStore(blocker / "history.sqlite").initialize()


def test_operations_require_initialize(tmp_path):
    with pytest.raises(CacheStoreError, match="not initialized"):
        CacheStore(tmp_path / "h.sqlite").is_empty()


def test_is_empty(store, make_item):
    assert store.is_empty()
    store.upsert_items([make_item()])
    assert not store.is_empty()


def test_upsert_same_url_keeps_one_row(store, make_item):
    store.upsert_items([make_item(url="https://a.com/", title="First", last_visit=1000)])
    store.upsert_items([
        make_item(url="https://a.com/", title="Second", last_visit=2000, visit_count=4,
                  browser=BrowserType.ZEN, profile="p1"),
    ])
    items = store.load_all()
    assert len(items) == 1
    assert items[0].title == "Second"
    assert items[0].last_visit == 2000
    assert items[0].visit_count == 4
    assert items[0].browser is BrowserType.ZEN
    assert items[0].profile == "p1"


def test_upsert_returns_domains_without_favicon(store, make_item):
    store.save_favicon("b.com", b"icon")
    missing = store.upsert_items([
        make_item(url="https://a.com/1"),
        make_item(url="https://a.com/2"),
        make_item(url="https://b.com/"),
    ])
    assert missing == ["a.com"]
    linked = {i.url: i.favicon for i in store.load_all()}
    assert linked["https://b.com/"].image_data == b"icon"
    assert linked["https://a.com/1"] is None


def test_upsert_with_favicon_links_existing_row(store, make_item):
    icon = Favicon(id=0, url="a.com", image_data=b"data")
    store.upsert_items([make_item(url="https://a.com/1", favicon=icon)])
    store.upsert_items([make_item(url="https://a.com/2", favicon=icon)])
    assert store.counts() == (2, 1)


def test_load_page_orders_by_recency(store, make_item):
    store.upsert_items([make_item(url=f"https://s{i}.com/", last_visit=i) for i in range(5)])
    first = store.load_page(2, 0)
    second = store.load_page(2, 2)
    rest = store.load_page(2, 4)
    assert [i.last_visit for i in first] == [4, 3]
    assert [i.last_visit for i in second] == [2, 1]
    assert [i.last_visit for i in rest] == [0]
    assert store.load_page(2, 6) == []


def test_delete_since(store, make_item):
    store.upsert_items([make_item(url=f"https://s{i}.com/", last_visit=i * 100) for i in range(5)])
    assert store.delete_since(300) == 2
    assert [i.last_visit for i in store.load_all()] == [200, 100, 0]


def test_replace_since_scoped_to_browser(store, make_item):
    store.upsert_items([
        make_item(url="https://chrome-old.com/", last_visit=100),
        make_item(url="https://chrome-today.com/", last_visit=500),
        make_item(url="https://zen-today.com/", last_visit=600, browser=BrowserType.ZEN),
    ])
    store.replace_since(
        400,
        [make_item(url="https://chrome-new.com/", last_visit=700)],
        browsers=[BrowserType.CHROME],
    )
    urls = [i.url for i in store.load_all()]
    assert urls == ["https://chrome-new.com/", "https://zen-today.com/", "https://chrome-old.com/"]


def test_replace_since_can_purge_favicons(store, make_item):
    store.upsert_items([make_item(url="https://a.com/", last_visit=100)])
    store.save_favicon("a.com", b"icon")
    missing = store.replace_since(1000, [], delete_favicons=True)
    assert missing == []
    assert store.counts() == (1, 0)
    assert store.load_all()[0].favicon is None


def test_save_favicon_lookup_or_create(store, make_item):
    store.upsert_items([make_item(url="https://a.com/x")])
    first = store.save_favicon("a.com", b"one")
    second = store.save_favicon("a.com", b"two")
    assert first.id == second.id
    assert store.get_favicon("a.com").image_data == b"two"
    assert store.counts() == (1, 1)
    assert store.load_all()[0].favicon == second


def test_save_favicon_without_overwrite(store):
    store.save_favicon("a.com", b"one")
    kept = store.save_favicon("a.com", b"two", overwrite=False)
    assert kept.image_data == b"one"


def test_get_favicon_missing(store):
    assert store.get_favicon("nothing.com") is None


def test_delete_all_favicons_nulls_history_reference(store, make_item):
    store.upsert_items([make_item(url="https://a.com/")])
    store.save_favicon("a.com", b"icon")
    assert store.delete_all_favicons() == 1
    item = store.load_all()[0]
    assert item.favicon is None


def test_tokens_and_suggestions(store):
    store.record_tokens(["github", "gitlab"], now_ms=100)
    store.record_tokens(["gitlab"], now_ms=200)
    store.record_tokens(["gitea"], now_ms=300)
    assert store.get_token("gitlab").frequency == 2
    assert store.get_token("gitlab").last_used == 200
    assert store.suggestions("git") == ["gitlab", "gitea", "github"]
    assert store.suggestions("git", limit=1) == ["gitlab"]
    assert store.suggestions("xyz") == []


def test_suggestions_escape_like_wildcards(store):
    store.record_tokens(["100%done", "100abc"], now_ms=1)
    assert store.suggestions("100%") == ["100%done"]


def test_counts(store, make_item):
    store.upsert_items([make_item(url="https://a.com/"), make_item(url="https://b.com/")])
    store.save_favicon("a.com", b"x")
    assert store.counts() == (2, 1)


def test_concurrent_writers_are_serialized(store, make_item):
    def write(n):
        store.upsert_items([make_item(url=f"https://t{n}-{i}.com/", last_visit=i) for i in range(20)])

    threads = [threading.Thread(target=write, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.counts() == (160, 0)


def test_failed_transaction_rolls_back(store, make_item):
    store.upsert_items([make_item(url="https://a.com/")])
    with pytest.raises(CacheStoreError):
        with store._transaction() as conn:
            conn.execute("DELETE FROM history")
            conn.execute("SELECT * FROM missing_table")
    assert store.counts() == (1, 0)
