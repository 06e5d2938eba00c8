"""
HTML Fetcher

Stage 2 of the ingestion pipeline: retrieve raw HTML for each candidate URL.

Requests go out one at a time with a rotating desktop User-Agent, a fixed
timeout, bounded redirects and a politeness delay between requests. A failing
URL is logged and skipped; it never aborts the batch.
"""

from __future__ import annotations

import random
from typing import Iterable, Optional
from urllib.parse import urlparse

import httpx

from .config import FetchConfig
from .errors import FetchError, PermanentInputError, TransientFetchError
from .logging_utils import get_logger, is_debug
from .models import FetchedContent
from .throttle import Throttle


USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}


def compute_checksum(content: str) -> str:
    """
    32-bit rolling hash (h * 31 + c) of the content, as signed hex.

    Only meant for cheap change detection between runs. Not collision
    resistant and not an integrity check.
    """
    value = 0
    for char in content:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(value, "x") if value >= 0 else "-" + format(-value, "x")


def _validate_url(url: str) -> str:
    cleaned = (url or "").strip()
    parsed = urlparse(cleaned)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise PermanentInputError(f"Malformed URL: {url!r}")
    return cleaned


class HTMLFetcher:
    """
    Fetches pages with httpx.

    Usage:
        with HTMLFetcher() as fetcher:
            contents = fetcher.fetch_multiple(urls)
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        http_client: Optional[httpx.Client] = None,
        throttle: Optional[Throttle] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or FetchConfig()
        self.logger = get_logger(__name__)
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=self.config.timeout_seconds,
            follow_redirects=True,
            max_redirects=self.config.max_redirects,
        )
        self.throttle = throttle or Throttle(self.config.delay_seconds)
        self._rng = rng or random.Random()

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self._rng.choice(USER_AGENTS), **BASE_HEADERS}

    def fetch_html(self, url: str) -> FetchedContent:
        """
        Fetch a single URL.

        Raises:
            PermanentInputError: the URL is malformed.
            TransientFetchError: timeout, network failure or 5xx.
            FetchError: any other non-2xx response or too many redirects.
        """
        url = _validate_url(url)
        self.logger.info("Fetching: %s", url)

        try:
            response = self._client.get(url, headers=self._headers())
        except httpx.TimeoutException as e:
            raise TransientFetchError(url, f"timeout ({e})") from e
        except httpx.TooManyRedirects as e:
            raise FetchError(url, f"too many redirects ({e})") from e
        except httpx.TransportError as e:
            raise TransientFetchError(url, f"network error ({e})") from e

        status = response.status_code
        if status >= 500:
            raise TransientFetchError(url, f"HTTP {status}", status_code=status)
        if not 200 <= status < 300:
            raise FetchError(url, f"HTTP {status}", status_code=status)

        html = response.text
        content = FetchedContent(
            url=url,
            html=html,
            status_code=status,
            content_type=response.headers.get("content-type"),
            last_modified=response.headers.get("last-modified"),
            checksum=compute_checksum(html),
        )
        self.logger.info("Fetched %s (%s chars)", url, len(html))
        if is_debug():
            self.logger.debug("Checksum for %s: %s", url, content.checksum)
        return content

    def fetch_multiple(self, urls: Iterable[str]) -> list[FetchedContent]:
        """Fetch URLs sequentially, keeping only successes."""
        results: list[FetchedContent] = []
        for url in urls:
            self.throttle.wait()
            try:
                results.append(self.fetch_html(url))
            except (FetchError, PermanentInputError) as e:
                self.logger.warning("Skipping %s: %s", url, e)
            except Exception:
                self.logger.exception("Unexpected error fetching %s, skipping", url)
        return results

    def close(self) -> None:
        if self._owns_client and self._client:
            self._client.close()

    def __enter__(self) -> "HTMLFetcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
