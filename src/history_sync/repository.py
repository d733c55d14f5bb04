"""Repository facade: extraction, caching, paging, enrichment and search."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable

from history_sync.browser.models import BrowserSelection, BrowserType, ExtractResult, HistoryItem
from history_sync.browser.parser import merge_and_dedup
from history_sync.browser.reader import HistoryExtractor, default_extractors
from history_sync.config import SyncConfig, load_config
from history_sync.exceptions import CacheStoreError
from history_sync.favicons.enricher import FaviconEnricher
from history_sync.favicons.fetcher import FaviconFetcher
from history_sync.observable import Observable
from history_sync.search.ranking import rank, tokenize
from history_sync.store.cache import CacheStore
from history_sync.utils import now_millis, start_of_today_millis

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3

Snapshot = tuple[HistoryItem, ...]


class HistoryRepository:
    """Entry point for UI collaborators.

    Owns the live snapshot and the pagination cursor. I/O runs on a background
    thread pool; ``refresh`` is the only call that blocks its caller.

    Args:
        config: Runtime settings; defaults to ``load_config()``.
        store: Cache store; built from ``config.db_path`` when omitted.
        extractors: Browser adapters; defaults to every supported browser.
        enricher: Favicon enricher; built from ``config`` when omitted.
        executor: Background pool; the repository creates and owns one when omitted.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        store: CacheStore | None = None,
        extractors: list[HistoryExtractor] | None = None,
        enricher: FaviconEnricher | None = None,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.config = config or load_config()
        self.store = store or CacheStore(self.config.db_path, self.config.busy_timeout_ms)
        self.extractors = (
            extractors if extractors is not None else default_extractors(self.config.lookback_hours)
        )
        self.enricher = enricher or FaviconEnricher(
            self.store,
            FaviconFetcher(
                connect_timeout=self.config.favicon_connect_timeout_s,
                read_timeout=self.config.favicon_read_timeout_s,
                max_retries=self.config.favicon_max_retries,
                retry_base_delay=self.config.favicon_retry_base_delay_s,
            ),
            batch_size=self.config.favicon_batch_size,
            request_delay=self.config.favicon_request_delay_s,
            size=self.config.favicon_size,
        )
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="history-sync"
        )

        self._snapshot: Observable[Snapshot] = Observable(())
        self._loading_more: Observable[bool] = Observable(False)

        # Held by whichever job owns the cursor: bootstrap, refresh or load_more.
        self._load_lock = threading.Lock()
        # Serializes snapshot replacement against cursor-sized reloads.
        self._publish_lock = threading.Lock()
        self._offset = 0
        self._has_more = True

        self._selection = BrowserSelection.all()
        self.last_extract_results: dict[BrowserType, ExtractResult] = {}

        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Future:
        """Open the store and bootstrap in the background.

        Raises CacheStoreInitError if the store can't be opened; nothing else
        works without it.
        """
        self.store.initialize()
        return self._submit(self._bootstrap)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        self.store.close()

    def wait_for_background(self, timeout: float | None = None) -> bool:
        """Block until queued background jobs (including follow-ups) finish."""
        while True:
            with self._pending_lock:
                pending = set(self._pending)
            if not pending:
                return True
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                return False

    def _submit(self, fn: Callable, *args) -> Future:
        future = self._executor.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _bootstrap(self) -> None:
        missing: list[str] = []
        with self._load_lock:
            try:
                if self.store.is_empty():
                    items = merge_and_dedup(self._extract(BrowserSelection.all()))
                    missing = self.store.upsert_items(items)
                    logger.info("[DB] Bootstrapped cache with %d items", len(items))
                else:
                    logger.info("[DB] Database already initialized, skipping bootstrap")
                self._load_first_page()
            except CacheStoreError as e:
                logger.error("[DB] Bootstrap failed: %s", e)
                return
        self._snapshot.notify()
        self._schedule_enrichment(missing)

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot.value

    @property
    def is_loading_more(self) -> bool:
        return self._loading_more.value

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def selection(self) -> BrowserSelection:
        return self._selection

    def subscribe(self, callback: Callable[[Snapshot], None], replay: bool = True) -> Callable[[], None]:
        """Callbacks run with no repository lock held and may call back into it."""
        return self._snapshot.subscribe(callback, replay=replay)

    def subscribe_loading(self, callback: Callable[[bool], None], replay: bool = True) -> Callable[[], None]:
        return self._loading_more.subscribe(callback, replay=replay)

    # ------------------------------------------------------------------
    # Extraction and paging
    # ------------------------------------------------------------------

    def _extract(self, selection: BrowserSelection, since_ms: int | None = None) -> list[HistoryItem]:
        items: list[HistoryItem] = []
        for extractor in self.extractors:
            if not selection.matches(extractor.browser) or not extractor.is_available():
                continue
            result = extractor.extract_result(self.config.extract_limit, since_ms)
            self.last_extract_results[extractor.browser] = result
            logger.info(
                "Extracted %d items from %s (%s)",
                len(result.items), extractor.browser.value, result.status.value,
            )
            items.extend(result.items)
        return items

    def _load_first_page(self) -> list[HistoryItem]:
        """Reset the cursor to page one. Subscribers are not notified; the caller
        does that once it has released ``_load_lock``."""
        page = self.store.load_page(self.config.page_size, 0)
        with self._publish_lock:
            self._offset = self.config.page_size
            self._has_more = len(page) >= self.config.page_size
            self._snapshot.set(tuple(page), notify=False)
        return page

    def refresh(
        self,
        selection: BrowserSelection | None = None,
        delete_favicons: bool = False,
    ) -> list[HistoryItem]:
        """Re-read today's visits from the selected browsers and reload page one.

        Waits for an in-flight ``load_more`` or bootstrap to finish first. On a
        store failure the previous snapshot stays and is returned.
        """
        selection = selection or BrowserSelection.all()
        start_of_today = start_of_today_millis()
        with self._load_lock:
            extracted = [
                item
                for item in self._extract(selection, since_ms=start_of_today)
                if item.last_visit >= start_of_today
            ]
            processed = merge_and_dedup(extracted)
            browsers = None if selection.browser is None else [selection.browser]
            try:
                missing = self.store.replace_since(
                    start_of_today, processed, browsers=browsers, delete_favicons=delete_favicons
                )
                page = self._load_first_page()
            except CacheStoreError as e:
                logger.error("[DB] Refresh failed, keeping previous snapshot: %s", e)
                return list(self.snapshot)
        self._snapshot.notify()
        self._schedule_enrichment(missing)
        return page

    def load_more(self) -> Future | None:
        """Append the next page in the background.

        Returns None without doing anything when a load is already running or
        every row has been loaded.
        """
        if not self._has_more:
            return None
        if not self._load_lock.acquire(blocking=False):
            return None
        self._loading_more.set(True, notify=False)
        try:
            future = self._submit(self._load_next_page)
        except RuntimeError:
            self._loading_more.set(False, notify=False)
            self._load_lock.release()
            raise
        self._loading_more.notify()
        return future

    def _load_next_page(self) -> None:
        new_items: list[HistoryItem] = []
        try:
            page = self.store.load_page(self.config.page_size, self._offset)
            with self._publish_lock:
                if not page:
                    self._has_more = False
                else:
                    self._offset += self.config.page_size
                    self._has_more = len(page) >= self.config.page_size
                    self._snapshot.set(self._snapshot.value + tuple(page), notify=False)
                    new_items = page
        except CacheStoreError as e:
            logger.error("[DB] Failed loading page at offset %d: %s", self._offset, e)
        finally:
            self._loading_more.set(False, notify=False)
            self._load_lock.release()
        if new_items:
            self._snapshot.notify()
        self._loading_more.notify()
        self._schedule_enrichment(item.domain for item in new_items if item.favicon is None)

    def _republish(self) -> None:
        """Reload the rows loaded so far so newly stored icons show up.

        Only the already-paged window is reloaded, not the whole table, so the
        snapshot length keeps matching the pagination cursor.
        """
        with self._publish_lock:
            try:
                items = self.store.load_page(max(self._offset, self.config.page_size), 0)
            except CacheStoreError as e:
                logger.warning("[DB] Reload after favicon batch failed: %s", e)
                return
            self._snapshot.set(tuple(items), notify=False)
        self._snapshot.notify()

    # ------------------------------------------------------------------
    # Favicons
    # ------------------------------------------------------------------

    def _schedule_enrichment(self, domains: Iterable[str]) -> Future | None:
        unique = list(dict.fromkeys(d for d in domains if d))
        if not unique:
            return None
        return self._submit(self._run_enrichment, unique)

    def _run_enrichment(self, domains: list[str]) -> None:
        logger.info("[Favicons] Starting background favicon fetch for %d domains", len(domains))
        asyncio.run(self.enricher.enrich_batch(domains, on_batch=self._republish))

    def get_favicon(self, domain: str) -> Future:
        """Cached or freshly fetched icon for ``domain``, resolved in the background."""
        return self._submit(lambda: asyncio.run(self.enricher.enrich(domain)))

    # ------------------------------------------------------------------
    # Search and suggestions
    # ------------------------------------------------------------------

    def select_browser(self, selection: BrowserSelection) -> None:
        self._selection = selection

    def search(self, query: str) -> list[HistoryItem]:
        """Rank the current snapshot for ``query`` within the selected browser."""
        selection = self._selection
        items = [item for item in self.snapshot if selection.matches(item.browser)]
        return rank(items, query)

    def record_query(self, text: str) -> None:
        """Remember the terms of a committed query for suggestions."""
        words = list(dict.fromkeys(t for t in tokenize(text) if len(t) >= MIN_TOKEN_LENGTH))
        if not words:
            return
        try:
            self.store.record_tokens(words, now_millis())
        except CacheStoreError as e:
            logger.warning("Failed to save query tokens: %s", e)

    def suggestions(self, prefix: str, limit: int = 5) -> list[str]:
        p = prefix.strip().lower()
        if not p:
            return []
        try:
            return self.store.suggestions(p, limit)
        except CacheStoreError as e:
            logger.warning("Failed to load suggestions for %r: %s", p, e)
            return []

    def validate(self) -> tuple[int, int]:
        """Row counts as (history, favicons); (0, 0) if the store can't be read."""
        try:
            history_count, favicon_count = self.store.counts()
        except CacheStoreError as e:
            logger.error("[DB] Validation failed: %s", e)
            return 0, 0
        logger.info(
            "[DB] history rows=%d, favicons rows=%d in %s",
            history_count, favicon_count, self.store.db_path,
        )
        return history_count, favicon_count
