"""Favicon download and background enrichment."""

from history_sync.favicons.models import EnrichmentReport, Favicon, FetchResult, FetchStatus
from history_sync.favicons.fetcher import FaviconFetcher, candidate_urls
from history_sync.favicons.enricher import FaviconEnricher

__all__ = [
    "EnrichmentReport",
    "Favicon",
    "FetchResult",
    "FetchStatus",
    "FaviconFetcher",
    "candidate_urls",
    "FaviconEnricher",
]
