"""
Geocoding helper.

Uses the Google Geocoding API, biased to San Francisco, to give events lat/lng
from their venue name and address. Results are cached in memory per instance
so a venue repeated within one run costs a single request.
"""

from __future__ import annotations

from typing import Iterable, Optional

import httpx

from .config import CITY_NAME, SF_BOUNDS, BoundingBox, GeocoderConfig
from .errors import OracleParseError
from .logging_utils import get_logger, is_debug
from .models import ExtractedEvent, GeocodingRequest, GeocodingResult
from .throttle import Throttle


COMPONENTS = "locality:san francisco|administrative_area:CA|country:US"


def _normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def build_search_query(request: GeocodingRequest) -> str:
    """'{venue} {address} San Francisco CA' (address optional)."""
    parts = [request.venue_name.strip()]
    if request.address and request.address.strip():
        parts.append(request.address.strip())
    parts.append(f"{CITY_NAME} CA")
    return " ".join(parts)


def is_within_bounds(lat: float, lng: float, bounds: BoundingBox = SF_BOUNDS) -> bool:
    return bounds.contains(lat, lng)


def _parse_first_result(data: dict) -> GeocodingResult:
    try:
        first = data["results"][0]
        location = first["geometry"]["location"]
        return GeocodingResult(
            lat=float(location["lat"]),
            lng=float(location["lng"]),
            formatted_address=first.get("formatted_address") or "",
        )
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise OracleParseError(f"unexpected geocoding payload: {e}", raw=str(data)) from e


class Geocoder:
    """
    Usage:
        with Geocoder(config) as geocoder:
            geocoder.enrich_events(events)
    """

    def __init__(
        self,
        config: Optional[GeocoderConfig] = None,
        http_client: Optional[httpx.Client] = None,
        throttle: Optional[Throttle] = None,
    ):
        self.config = config or GeocoderConfig()
        self.logger = get_logger(__name__)
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=self.config.timeout_seconds)
        self.throttle = throttle or Throttle(self.config.min_delay_seconds)
        self._cache: dict[str, Optional[GeocodingResult]] = {}

    def geocode_venue(self, request: GeocodingRequest) -> Optional[GeocodingResult]:
        """Geocode one venue. Never raises; returns None on any failure."""
        if not self.config.api_key:
            self.logger.warning("GOOGLE_MAPS_API_KEY not configured, skipping geocoding")
            return None

        query = build_search_query(request)
        cache_key = _normalize_query(query)
        if cache_key in self._cache:
            return self._cache[cache_key]

        self.throttle.wait()
        try:
            response = self._client.get(
                self.config.endpoint,
                params={
                    "address": query,
                    "key": self.config.api_key,
                    "bounds": self.config.bounds.as_google_bounds(),
                    "components": COMPONENTS,
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning("Geocoding request failed for '%s': %s", query, e)
            return None

        status = data.get("status") if isinstance(data, dict) else None
        if status != "OK" or not data.get("results"):
            self.logger.warning(
                "Geocoding returned %s for '%s'%s",
                status,
                query,
                f": {data.get('error_message')}" if isinstance(data, dict) and data.get("error_message") else "",
            )
            self._cache[cache_key] = None
            return None

        try:
            result = _parse_first_result(data)
        except OracleParseError as e:
            self.logger.warning("%s (query '%s')", e, query)
            return None

        self._cache[cache_key] = result
        if is_debug():
            self.logger.debug("Geocoded '%s' -> %s,%s", query, result.lat, result.lng)
        return result

    def enrich_events(self, events: Iterable[ExtractedEvent]) -> int:
        """Fill in lat/lng for events with a venue and no coordinates. Returns the count applied."""
        enriched = 0
        for event in events:
            if event.lat is not None and event.lng is not None:
                continue
            if not event.venue_name:
                continue

            result = self.geocode_venue(
                GeocodingRequest(venue_name=event.venue_name, address=event.address)
            )
            if result is None:
                continue
            if not is_within_bounds(result.lat, result.lng, self.config.bounds):
                self.logger.warning(
                    "Geocode for '%s' is outside San Francisco (%s,%s), not applied",
                    event.venue_name, result.lat, result.lng,
                )
                continue

            event.lat = result.lat
            event.lng = result.lng
            enriched += 1

        self.logger.info("Geocoded %s events", enriched)
        return enriched

    def close(self) -> None:
        if self._owns_client and self._client:
            self._client.close()

    def __enter__(self) -> "Geocoder":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
