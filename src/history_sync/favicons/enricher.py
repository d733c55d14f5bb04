"""Background favicon enrichment: one fetch per domain, batched and rate limited."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, Iterable

from history_sync.exceptions import CacheStoreError
from history_sync.favicons.fetcher import FaviconFetcher
from history_sync.favicons.models import EnrichmentReport, Favicon

if TYPE_CHECKING:
    from history_sync.store.cache import CacheStore

logger = logging.getLogger(__name__)

_CACHED = "cached"
_FETCHED = "fetched"
_FAILED = "failed"
_SKIPPED = "skipped"


class FaviconEnricher:
    """Attach icons to domains, never running two fetches for the same domain."""

    def __init__(
        self,
        store: CacheStore,
        fetcher: FaviconFetcher | None = None,
        batch_size: int = 5,
        request_delay: float = 0.1,
        size: int = 64,
    ):
        self.store = store
        self.fetcher = fetcher or FaviconFetcher()
        self.batch_size = max(1, batch_size)
        self.request_delay = request_delay
        self.size = size
        self._inflight: set[str] = set()
        self._inflight_lock = threading.Lock()

    @property
    def in_flight(self) -> frozenset[str]:
        with self._inflight_lock:
            return frozenset(self._inflight)

    def _claim(self, domain: str) -> tuple[Favicon | None, bool]:
        """Return a cached icon, or mark ``domain`` in flight.

        The existence check and the mark happen under one lock so a second
        caller can't slip in between them.
        """
        with self._inflight_lock:
            existing = self.store.get_favicon(domain)
            if existing is not None:
                return existing, False
            if domain in self._inflight:
                return None, False
            self._inflight.add(domain)
            return None, True

    def _release(self, domain: str) -> None:
        with self._inflight_lock:
            self._inflight.discard(domain)

    async def enrich(self, domain: str) -> Favicon | None:
        """Icon for ``domain`` from the cache or the network; None if unavailable."""
        favicon, _ = await self._enrich(domain)
        return favicon

    async def _enrich(self, domain: str) -> tuple[Favicon | None, str]:
        if not domain:
            return None, _SKIPPED
        try:
            existing, claimed = await asyncio.to_thread(self._claim, domain)
        except CacheStoreError as e:
            logger.warning("[Favicons] Lookup failed for %s: %s", domain, e)
            return None, _FAILED
        if existing is not None:
            return existing, _CACHED
        if not claimed:
            return None, _SKIPPED

        try:
            result = await self.fetcher.fetch(domain, self.size)
            if result is None:
                return None, _FAILED
            favicon = await asyncio.to_thread(self.store.save_favicon, domain, result.data, True)
            return favicon, _FETCHED
        except CacheStoreError as e:
            logger.warning("[Favicons] Failed to save favicon for %s: %s", domain, e)
            return None, _FAILED
        finally:
            self._release(domain)

    async def _enrich_after(self, domain: str, delay: float) -> tuple[Favicon | None, str]:
        if delay > 0:
            await asyncio.sleep(delay)
        return await self._enrich(domain)

    async def enrich_batch(
        self,
        domains: Iterable[str],
        on_batch: Callable[[], None] | None = None,
    ) -> EnrichmentReport:
        """Enrich distinct domains in fixed-size batches.

        Fetches inside a batch run concurrently, each starting ``request_delay``
        after the previous one. ``on_batch`` runs after every batch.
        """
        unique = list(dict.fromkeys(d for d in domains if d))
        report = EnrichmentReport(domains=len(unique))
        logger.info("[Favicons] Fetching favicons for %d unique domains", len(unique))
        start = time.monotonic()

        for i in range(0, len(unique), self.batch_size):
            batch = unique[i:i + self.batch_size]
            results = await asyncio.gather(
                *(
                    self._enrich_after(domain, idx * self.request_delay)
                    for idx, domain in enumerate(batch)
                ),
                return_exceptions=True,
            )
            for domain, result in zip(batch, results):
                if isinstance(result, Exception):
                    report.failed += 1
                    logger.warning("[Favicons] Failed to fetch favicon for %s: %s", domain, result)
                    continue
                outcome = result[1]
                if outcome == _FETCHED:
                    report.fetched += 1
                    logger.info("[Favicons] Fetched favicon for %s (ID: %s)", domain, result[0].id)
                elif outcome == _CACHED:
                    report.cached += 1
                elif outcome == _SKIPPED:
                    report.skipped += 1
                else:
                    report.failed += 1

            if on_batch is not None:
                try:
                    await asyncio.to_thread(on_batch)
                except Exception as e:
                    logger.warning("[Favicons] Batch callback failed: %s", e)

        report.elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "[Favicons] Background fetch completed: %d fetched, %d cached, %d failed in %dms",
            report.fetched, report.cached, report.failed, report.elapsed_ms,
        )
        return report
