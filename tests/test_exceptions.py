"""Tests for exception hierarchy."""

from history_sync.exceptions import (
    HistorySyncError,
    BrowserError,
    BrowserHistoryReadError,
    CacheStoreError,
    CacheStoreInitError,
)


def test_all_inherit_from_base():
    for exc_class in [
        BrowserError, BrowserHistoryReadError,
        CacheStoreError, CacheStoreInitError,
    ]:
        assert issubclass(exc_class, HistorySyncError)


def test_browser_hierarchy():
    assert issubclass(BrowserHistoryReadError, BrowserError)


def test_store_hierarchy():
    assert issubclass(CacheStoreInitError, CacheStoreError)


def test_exception_message():
    e = BrowserHistoryReadError("test error")
    assert str(e) == "test error"
