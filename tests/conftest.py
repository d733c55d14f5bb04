"""Shared fixtures: history items, browser databases and a cache store."""

import sqlite3

import httpx
import pytest

from history_sync.browser.models import BrowserType, HistoryItem
from history_sync.favicons.enricher import FaviconEnricher
from history_sync.favicons.fetcher import FaviconFetcher
from history_sync.store.cache import CacheStore
from history_sync.utils import domain_of

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-icon"


@pytest.fixture
def make_item():
    def _make(
        url="https://example.com/",
        title="Example",
        last_visit=1_700_000_000_000,
        visit_count=1,
        domain=None,
        browser=BrowserType.CHROME,
        profile="Default",
        favicon=None,
    ):
        if domain is None:
            domain = domain_of(url)
        return HistoryItem(
            browser=browser,
            profile=profile,
            url=url,
            title=title,
            last_visit=last_visit,
            visit_count=visit_count,
            domain=domain,
            favicon=favicon,
        )

    return _make


@pytest.fixture
def chrome_history_db():
    """Write a Chromium ``History`` file with a ``urls`` table."""

    def _create(path, rows):
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        conn.execute("""
            CREATE TABLE urls (
                id INTEGER PRIMARY KEY,
                url TEXT NOT NULL,
                title TEXT NOT NULL,
                last_visit_time INTEGER NOT NULL,
                visit_count INTEGER NOT NULL
            )
        """)
        conn.executemany(
            "INSERT INTO urls (url, title, last_visit_time, visit_count) VALUES (?, ?, ?, ?)",
            rows,
        )
        conn.commit()
        conn.close()
        return path

    return _create


@pytest.fixture
def gecko_places_db():
    """Write a Gecko ``places.sqlite`` file with a ``moz_places`` table."""

    def _create(path, rows):
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        conn.execute("""
            CREATE TABLE moz_places (
                id INTEGER PRIMARY KEY,
                url TEXT NOT NULL,
                title TEXT,
                last_visit_date INTEGER,
                visit_count INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.executemany(
            "INSERT INTO moz_places (url, title, last_visit_date, visit_count) VALUES (?, ?, ?, ?)",
            rows,
        )
        conn.commit()
        conn.close()
        return path

    return _create


@pytest.fixture
def store(tmp_path):
    cache = CacheStore(tmp_path / "cache" / "history.sqlite")
    cache.initialize()
    yield cache
    cache.close()


@pytest.fixture
def icon_transport():
    """Mock transport serving an icon for every URL; records requested URLs."""
    requests = []

    def handler(request):
        requests.append(str(request.url))
        return httpx.Response(200, headers={"content-type": "image/png"}, content=PNG_BYTES)

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


@pytest.fixture
def offline_enricher(store):
    """Enricher whose every candidate answers 404."""
    fetcher = FaviconFetcher(
        retry_base_delay=0,
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
    )
    return FaviconEnricher(store, fetcher, request_delay=0)
