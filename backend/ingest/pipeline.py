"""
Ingestion Pipeline

Orchestrates the full ingestion workflow for San Francisco:
1. Discovery (search queries → candidate URLs)
2. Fetch (raw HTML per URL)
3. Segment + Extract (posts → structured events via LLM)
4. Geocoding (venue → lat/lng)
5. Deduplication (fuzzy title match within a date window)
6. Upsert (idempotent, keyed by source hash)

Every stage consumes the full output of the previous one. A failure on one
item is logged and counted; it never aborts the run.
"""

from __future__ import annotations

import time
from typing import Optional

from database import EventStore, build_source_hash

from .config import SUPPORTED_CITY, IngestionConfig
from .deduplicator import Deduplicator
from .errors import PermanentInputError, PersistenceConflict, UnsupportedCityError
from .extractor import EventExtractor
from .fetcher import HTMLFetcher
from .geocoder import Geocoder, is_within_bounds
from .logging_utils import get_logger
from .models import ExtractedEvent, GeocodingRequest, IngestionResult
from .search import SearchClient

SAMPLE_EVENTS_LIMIT = 10
BACKFILL_RESULTS_LIMIT = 10


def ensure_supported_city(city: str) -> None:
    if city != SUPPORTED_CITY:
        raise UnsupportedCityError(city, SUPPORTED_CITY)


class IngestionPipeline:
    """
    Full ingestion pipeline for the supported city.

    Usage:
        with IngestionPipeline(config, store) as pipeline:
            result = pipeline.run(dry_run=False)
            print(result.summary)
    """

    def __init__(
        self,
        config: Optional[IngestionConfig] = None,
        store: Optional[EventStore] = None,
        search: Optional[SearchClient] = None,
        fetcher: Optional[HTMLFetcher] = None,
        extractor: Optional[EventExtractor] = None,
        geocoder: Optional[Geocoder] = None,
    ):
        """
        Args:
            config: Runtime settings. Defaults to IngestionConfig.from_env().
            store: Event store. Required for non-dry runs; dry runs only read from it.
            search, fetcher, extractor, geocoder: Injected stage components,
                built from config when omitted.
        """
        self.config = config or IngestionConfig.from_env()
        self.store = store
        self.logger = get_logger(__name__)
        self.search = search or SearchClient(self.config.search)
        self.fetcher = fetcher or HTMLFetcher(self.config.fetch)
        self.extractor = extractor or EventExtractor(self.config.extractor)
        self.geocoder = geocoder or Geocoder(self.config.geocoder)

    def _extract_all(self, contents) -> list[ExtractedEvent]:
        events: list[ExtractedEvent] = []
        for content in contents:
            try:
                events.extend(self.extractor.extract_events(content))
            except Exception:
                self.logger.exception("Extraction failed for %s, skipping", content.url)
        return events

    def _persist(self, event: ExtractedEvent) -> Optional[str]:
        """Upsert source and event. Returns the stored id, or None if the write failed."""
        try:
            source = self.store.upsert_source(event.source_url)
            persisted, created = self.store.upsert_event(event, source.id)
        except (PersistenceConflict, PermanentInputError) as e:
            self.logger.warning("Upsert failed for '%s': %s", event.title, e)
            return None
        self.logger.info("%s event '%s'", "Created" if created else "Updated", event.title)
        return persisted.id

    def _is_same_identity(self, event: ExtractedEvent, existing_id: Optional[str]) -> bool:
        if not existing_id or self.store is None:
            return False
        existing = self.store.get_event(existing_id)
        return existing is not None and existing.source_hash == build_source_hash(event)

    def run(self, city: str = SUPPORTED_CITY, dry_run: bool = True) -> IngestionResult:
        """
        Run one ingestion.

        Raises:
            UnsupportedCityError: city is not the supported city.
            ValueError: a non-dry run without a store.
        """
        ensure_supported_city(city)
        if not dry_run and self.store is None:
            raise ValueError("A store is required unless dry_run is set")

        start_time = time.time()
        result = IngestionResult(city=city, dry_run=dry_run)
        self.logger.info("Starting %s for %s", "dry run" if dry_run else "ingestion", city)

        # Stage 1: Discovery
        urls = self.search.discover_event_urls()
        result.discovered = len(urls)
        if dry_run:
            urls = urls[: self.config.dry_run_sample_size]
            self.logger.info("Dry run: limiting fetch to %s URLs", len(urls))

        # Stage 2: Fetch
        contents = self.fetcher.fetch_multiple(urls)
        result.fetched = len(contents)

        # Stage 3: Segment + Extract
        events = self._extract_all(contents)
        result.extracted = len(events)

        # Stage 4: Geocoding (best-effort)
        result.geocoded = self.geocoder.enrich_events(events)

        # Stage 5 + 6: Deduplication and upsert
        deduplicator = Deduplicator(self.store, self.config.dedup)
        new_events: list[ExtractedEvent] = []
        for event in events:
            check = deduplicator.check_duplicate(event)
            if check.is_duplicate:
                result.duplicates += 1
                self.logger.info(
                    "Duplicate '%s' (%.2f, %s)", event.title, check.confidence, check.reason
                )
                # Same identity key: refresh the stored row instead of dropping the update
                if not dry_run and self._is_same_identity(event, check.existing_event_id):
                    if self._persist(event):
                        result.upserted += 1
                    else:
                        result.failed_upserts += 1
                continue

            result.new_events += 1
            new_events.append(event)
            if dry_run:
                deduplicator.remember(event)
                continue

            event_id = self._persist(event)
            if event_id:
                result.upserted += 1
            else:
                result.failed_upserts += 1
            deduplicator.remember(event, event_id)

        if dry_run:
            result.sample_events = new_events[:SAMPLE_EVENTS_LIMIT]

        result.duration_seconds = round(time.time() - start_time, 2)
        result.summary = result.build_summary()
        self.logger.info(result.summary)
        return result

    def backfill_coordinates(self) -> dict:
        """Geocode stored events that have a venue but no coordinates."""
        if self.store is None:
            raise ValueError("A store is required for backfilling coordinates")

        events = self.store.get_events_missing_coordinates()
        success = 0
        failed = 0
        results: list[dict] = []

        for event in events:
            geocoded = self.geocoder.geocode_venue(
                GeocodingRequest(venue_name=event.venue_name, address=event.address)
            )
            if geocoded is not None and is_within_bounds(
                geocoded.lat, geocoded.lng, self.config.geocoder.bounds
            ):
                self.store.update_event_coordinates(event.id, geocoded.lat, geocoded.lng)
                success += 1
                results.append(
                    {
                        "id": event.id,
                        "title": event.title,
                        "success": True,
                        "lat": geocoded.lat,
                        "lng": geocoded.lng,
                        "formatted_address": geocoded.formatted_address,
                    }
                )
            else:
                failed += 1
                results.append(
                    {
                        "id": event.id,
                        "title": event.title,
                        "success": False,
                        "error": "no result" if geocoded is None else "outside San Francisco",
                    }
                )

        self.logger.info("Backfill: %s geocoded, %s failed of %s", success, failed, len(events))
        return {
            "message": f"Geocoded {success} of {len(events)} events",
            "total": len(events),
            "success": success,
            "failed": failed,
            "results": results[:BACKFILL_RESULTS_LIMIT],
        }

    def close(self) -> None:
        """Cleanup HTTP clients."""
        self.search.close()
        self.fetcher.close()
        self.geocoder.close()

    def __enter__(self) -> "IngestionPipeline":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def run_ingestion(
    city: str,
    dry_run: bool = True,
    config: Optional[IngestionConfig] = None,
    store: Optional[EventStore] = None,
) -> IngestionResult:
    """Validate the city, then run one pipeline with components built from config."""
    ensure_supported_city(city)
    config = config or IngestionConfig.from_env()
    # Dry runs still read the store for duplicate checks
    if store is None:
        store = EventStore(config.database_path)
    with IngestionPipeline(config, store) as pipeline:
        return pipeline.run(city, dry_run=dry_run)


def backfill_coordinates(
    store: EventStore, config: Optional[IngestionConfig] = None
) -> dict:
    config = config or IngestionConfig.from_env()
    with IngestionPipeline(config, store) as pipeline:
        return pipeline.backfill_coordinates()
