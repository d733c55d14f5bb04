"""Unified exception hierarchy for history-sync."""


class HistorySyncError(Exception):
    """Base exception for all history-sync errors."""


# Browser sources
class BrowserError(HistorySyncError):
    """Base exception for browser history operations."""


class BrowserHistoryReadError(BrowserError):
    """Failed to copy, open or query a browser history database."""


# Cache store
class CacheStoreError(HistorySyncError):
    """Base exception for local cache store operations."""


class CacheStoreInitError(CacheStoreError):
    """The cache store could not be created or opened."""
