"""Local cache store."""

from history_sync.store.cache import CacheStore
from history_sync.store.models import Token

__all__ = ["CacheStore", "Token"]
