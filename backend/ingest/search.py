"""
URL Discovery Module

Stage 1 of the ingestion pipeline: issue a fixed set of search queries and
collect the result URLs into an ordered, de-duplicated candidate list.

Uses SerpAPI (Google engine, located in San Francisco). A failed query simply
contributes zero URLs; there are no retries.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

import httpx

from .config import SearchConfig
from .logging_utils import get_logger, is_debug
from .models import SearchResult
from .throttle import Throttle


def extract_domain(url: str) -> str:
    """Host of a URL without a leading 'www.', or 'unknown'."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return "unknown"
    if not host:
        return "unknown"
    return host[4:] if host.startswith("www.") else host


class SearchClient:
    """
    Discovers candidate event listing URLs via the search oracle.

    Usage:
        with SearchClient(config) as search:
            urls = search.discover_event_urls()
    """

    def __init__(
        self,
        config: Optional[SearchConfig] = None,
        http_client: Optional[httpx.Client] = None,
        throttle: Optional[Throttle] = None,
    ):
        self.config = config or SearchConfig()
        self.logger = get_logger(__name__)
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=self.config.timeout_seconds)
        self.throttle = throttle or Throttle(self.config.delay_seconds)

    def search_events(self, query: str) -> list[SearchResult]:
        """Run one query. Returns [] on missing key or any failure."""
        if not self.config.api_key:
            self.logger.warning("SERPAPI_KEY not configured, skipping search for '%s'", query)
            return []

        try:
            response = self._client.get(
                self.config.endpoint,
                params={
                    "q": query,
                    "api_key": self.config.api_key,
                    "engine": "google",
                    "location": self.config.location,
                    "num": self.config.max_results_per_query,
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning("Search failed for query '%s': %s", query, e)
            return []

        if not isinstance(data, dict):
            self.logger.warning("Search for '%s' returned a non-object body", query)
            return []

        results: list[SearchResult] = []
        for item in data.get("organic_results") or []:
            if not isinstance(item, dict):
                continue
            link = item.get("link")
            if not isinstance(link, str) or not link:
                continue
            results.append(
                SearchResult(
                    url=link,
                    title=item.get("title") or "",
                    snippet=item.get("snippet") or "",
                    source=extract_domain(link),
                )
            )

        if is_debug():
            self.logger.debug("Query '%s' returned %s results", query, len(results))
        return results

    def discover_event_urls(self) -> list[str]:
        """
        Run every configured query and return unique URLs in first-seen order,
        capped at max_total_results.
        """
        if not self.config.api_key:
            self.logger.warning("SERPAPI_KEY not configured, discovery skipped")
            return []

        seen: dict[str, None] = {}
        for query in self.config.queries:
            self.throttle.wait()
            self.logger.info("Searching for: %s", query)
            try:
                results = self.search_events(query)
            except Exception:
                self.logger.exception("Search failed for query '%s'", query)
                continue
            for result in results:
                seen.setdefault(result.url, None)

        urls = list(seen)[: self.config.max_total_results]
        self.logger.info("Discovered %s unique URLs", len(urls))
        return urls

    def close(self) -> None:
        if self._owns_client and self._client:
            self._client.close()

    def __enter__(self) -> "SearchClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
