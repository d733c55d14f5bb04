"""Async favicon downloader with retries and a first-success race."""

from __future__ import annotations

import asyncio
import logging

import httpx

from history_sync.favicons.models import FetchResult, FetchStatus
from history_sync.utils import protocol_for

logger = logging.getLogger(__name__)

GOOGLE_S2_URL = "https://www.google.com/s2/favicons"

# Domains whose icon lives somewhere the generic candidates miss.
SPECIAL_CASES = {
    "myworkday.com": ["https://www.myworkday.com/favicon.ico"],
}

_FAVICON_SUBPATHS = ("/favicon.ico", "/img/icons/favicon.ico", "/swagger/favicon.ico")


def s2_favicon_url(domain: str, size: int = 64) -> str:
    return f"{GOOGLE_S2_URL}?domain={domain}&sz={size}"


def candidate_urls(domain: str, size: int = 64) -> list[str]:
    """Icon URLs to try for ``domain``, most specific first."""
    protocol = protocol_for(domain)
    urls = list(SPECIAL_CASES.get(domain, []))
    urls.append(s2_favicon_url(domain, size))
    urls.extend(f"{protocol}://{domain}{path}" for path in _FAVICON_SUBPATHS)
    return urls


def is_image_content_type(content_type: str | None) -> bool:
    return bool(content_type) and content_type.strip().lower().startswith("image/")


class FaviconFetcher:
    """Download icons over HTTP.

    Args:
        connect_timeout: Seconds to wait for a connection (default 5).
        read_timeout: Seconds to wait for response data (default 5).
        max_retries: Extra attempts after a transport failure (default 2).
        retry_base_delay: Linear backoff step in seconds (default 0.5).
        max_response_bytes: Largest icon accepted (default 1MB).
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        connect_timeout: float = 5.0,
        read_timeout: float = 5.0,
        max_retries: int = 2,
        retry_base_delay: float = 0.5,
        max_response_bytes: int = 1_048_576,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.max_response_bytes = max_response_bytes
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                self.read_timeout, connect=self.connect_timeout, read=self.read_timeout
            ),
            follow_redirects=True,
            headers={"User-Agent": "HistorySync/1.0"},
            transport=self._transport,
        )

    async def download(self, url: str, client: httpx.AsyncClient) -> FetchResult:
        """Fetch one candidate, retrying transport failures with linear backoff.

        HTTP errors and non-image responses are final and not retried. Never
        raises for a network failure; the result carries the status instead.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.get(url)
            except httpx.InvalidURL as e:
                return FetchResult(url, FetchStatus.TRANSPORT_ERROR, attempts=attempt, detail=str(e))
            except httpx.TransportError as e:
                if attempt > self.max_retries:
                    logger.warning(
                        "Failed to download favicon from %s after %d retries: %s",
                        url, self.max_retries, e,
                    )
                    return FetchResult(
                        url, FetchStatus.TRANSPORT_ERROR, attempts=attempt, detail=str(e)
                    )
                logger.info("Retry %d/%d for %s due to: %s", attempt, self.max_retries, url, e)
                await asyncio.sleep(self.retry_base_delay * attempt)
                continue
            except httpx.HTTPError as e:
                # Redirect loops, undecodable bodies: final, not retried.
                logger.debug("Failed to fetch favicon from %s: %s", url, e)
                return FetchResult(url, FetchStatus.TRANSPORT_ERROR, attempts=attempt, detail=str(e))
            return self._validate(url, response, attempt)

    def _validate(self, url: str, response: httpx.Response, attempt: int) -> FetchResult:
        if not response.is_success:
            logger.debug("Failed to fetch favicon from %s: HTTP %d", url, response.status_code)
            return FetchResult(
                url, FetchStatus.HTTP_ERROR, attempts=attempt, detail=f"HTTP {response.status_code}"
            )
        content_type = response.headers.get("content-type", "")
        if not is_image_content_type(content_type):
            logger.debug("URL is not an image. Content-Type: %s", content_type)
            return FetchResult(url, FetchStatus.NOT_IMAGE, attempts=attempt, detail=content_type)
        data = response.content
        if not data:
            return FetchResult(url, FetchStatus.EMPTY, attempts=attempt)
        if len(data) > self.max_response_bytes:
            return FetchResult(
                url, FetchStatus.HTTP_ERROR, attempts=attempt,
                detail=f"Response too large (>{self.max_response_bytes} bytes)",
            )
        return FetchResult(url, FetchStatus.OK, data=data, attempts=attempt)

    async def fetch_first(self, candidates: list[str]) -> FetchResult | None:
        """Request every candidate at once; the first usable icon wins, the rest are cancelled."""
        if not candidates:
            return None
        async with self.client() as client:
            tasks = [asyncio.create_task(self.download(url, client)) for url in candidates]
            try:
                for next_done in asyncio.as_completed(tasks):
                    result = await next_done
                    if result.ok:
                        return result
                return None
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

    async def fetch(self, domain: str, size: int = 64) -> FetchResult | None:
        return await self.fetch_first(candidate_urls(domain, size))
