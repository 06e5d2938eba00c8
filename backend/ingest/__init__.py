"""
SF Events Ingestion Package

Discovery → fetch → segment → LLM extraction → geocoding → fuzzy dedup for
public events in San Francisco. The pipeline itself lives in ingest.pipeline.
"""

from .models import ExtractedEvent, IngestionResult, PersistedEvent
from .search import SearchClient
from .fetcher import HTMLFetcher
from .segmenter import PostSegmenter
from .extractor import EventExtractor
from .geocoder import Geocoder
from .deduplicator import Deduplicator

__all__ = [
    "ExtractedEvent",
    "PersistedEvent",
    "IngestionResult",
    "SearchClient",
    "HTMLFetcher",
    "PostSegmenter",
    "EventExtractor",
    "Geocoder",
    "Deduplicator",
]
