"""
Ingestion configuration.

Fixed city constants, search queries and the category taxonomy, plus
environment-driven runtime settings for every pipeline stage.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from .errors import ConfigurationError
from .logging_utils import get_logger

logger = get_logger(__name__)


SUPPORTED_CITY = "san-francisco"
CITY_NAME = "San Francisco"
CITY_TIMEZONE = ZoneInfo("America/Los_Angeles")


@dataclass(frozen=True)
class BoundingBox:
    """Rectangular lat/lng region (inclusive on all edges)."""
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    def as_google_bounds(self) -> str:
        return f"{self.min_lat},{self.min_lng}|{self.max_lat},{self.max_lng}"


SF_BOUNDS = BoundingBox(min_lat=37.7, min_lng=-122.55, max_lat=37.85, max_lng=-122.35)

SEARCH_QUERIES = [
    "events san francisco this month",
    "sf concerts this month",
    "free events sf weekend",
    "san francisco festivals this year",
    "sf tech meetups this month",
    "san francisco farmers markets",
    "sf art galleries events this month",
    "san francisco sports events this month",
    "sf community events calendar",
    "san francisco food festivals this month",
]

# slug -> display name
CATEGORIES: dict[str, str] = {
    "music": "Music",
    "festival": "Festival",
    "parade": "Parade",
    "food": "Food & Drink",
    "arts": "Arts & Theater",
    "tech": "Tech & Meetups",
    "sports": "Sports",
    "family": "Family",
    "market": "Markets & Sales",
    "community": "Community & Civic",
}

TAGS: dict[str, str] = {
    "free": "Free",
    "outdoor": "Outdoor",
    "indoor": "Indoor",
    "night": "Night",
    "pet-friendly": "Pet Friendly",
}

# Host fragments used to classify sources
OFFICIAL_HOSTS = ["sf.gov", "sfgov.org", "sfrecpark.org", "sfarts.org", ".gov", "ca.gov"]
TICKET_HOSTS = [
    "eventbrite.com",
    "ticketmaster.com",
    "goldstar.com",
    "meetup.com",
    "dice.fm",
    "axs.com",
    "seetickets.us",
    "universe.com",
    "lu.ma",
]
MEDIA_HOSTS = [
    "sfchronicle.com",
    "sfgate.com",
    "timeout.com",
    "sfbayguardian.com",
    "sfweekly.com",
    "sfstandard.com",
    "funcheap.com",
    "7x7.com",
]


def _read_positive_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        if value > 0:
            return value
    except ValueError:
        pass
    logger.warning("Invalid %s='%s', using default %s", name, raw, default)
    return default


def _read_non_negative_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        if value >= 0:
            return value
    except ValueError:
        pass
    logger.warning("Invalid %s='%s', using default %s", name, raw, default)
    return default


def _read_positive_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        if value > 0:
            return value
    except ValueError:
        pass
    logger.warning("Invalid %s='%s', using default %s", name, raw, default)
    return default


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _read_optional_str_env(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def require_api_key(value: Optional[str], name: str) -> str:
    """Return the credential or raise ConfigurationError for callers that cannot degrade."""
    if not value:
        raise ConfigurationError(f"{name} not configured")
    return value


@dataclass(frozen=True)
class SearchConfig:
    api_key: Optional[str] = None
    endpoint: str = "https://serpapi.com/search"
    location: str = "San Francisco, CA"
    queries: tuple[str, ...] = tuple(SEARCH_QUERIES)
    max_results_per_query: int = 20
    max_total_results: int = 200
    delay_seconds: float = 1.0
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class FetchConfig:
    timeout_seconds: float = 10.0
    max_redirects: int = 5
    delay_seconds: float = 1.0


@dataclass(frozen=True)
class ExtractorConfig:
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.1
    post_max_tokens: int = 1000
    page_max_tokens: int = 2000
    max_posts_per_page: int = 30
    post_text_chars: int = 2000
    page_text_chars: int = 8000
    delay_seconds: float = 0.5
    enforce_future_only: bool = True


@dataclass(frozen=True)
class GeocoderConfig:
    api_key: Optional[str] = None
    endpoint: str = "https://maps.googleapis.com/maps/api/geocode/json"
    timeout_seconds: float = 10.0
    min_delay_seconds: float = 0.2
    bounds: BoundingBox = SF_BOUNDS


@dataclass(frozen=True)
class DedupConfig:
    fuzzy_threshold: float = 0.8
    date_tolerance_hours: float = 24.0
    intra_batch: bool = True


@dataclass(frozen=True)
class IngestionConfig:
    search: SearchConfig = field(default_factory=SearchConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    geocoder: GeocoderConfig = field(default_factory=GeocoderConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    database_path: Optional[Path] = None
    dry_run_sample_size: int = 3

    @classmethod
    def from_env(cls) -> "IngestionConfig":
        """Build the configuration from environment variables."""
        database_path = _read_optional_str_env("DATABASE_PATH")
        return cls(
            search=SearchConfig(
                api_key=_read_optional_str_env("SERPAPI_KEY"),
                max_results_per_query=_read_positive_int_env("SEARCH_RESULTS_PER_QUERY", 20),
                max_total_results=_read_positive_int_env("SEARCH_MAX_TOTAL_RESULTS", 200),
                delay_seconds=_read_non_negative_float_env("SEARCH_DELAY_SECONDS", 1.0),
            ),
            fetch=FetchConfig(
                timeout_seconds=_read_positive_float_env("FETCH_TIMEOUT_SECONDS", 10.0),
                delay_seconds=_read_non_negative_float_env("FETCH_DELAY_SECONDS", 1.0),
            ),
            extractor=ExtractorConfig(
                api_key=_read_optional_str_env("OPENAI_API_KEY"),
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                max_posts_per_page=_read_positive_int_env("INGEST_MAX_POSTS_PER_PAGE", 30),
                delay_seconds=_read_non_negative_float_env("LLM_DELAY_SECONDS", 0.5),
                enforce_future_only=_read_bool_env("INGEST_ENFORCE_FUTURE_ONLY", True),
            ),
            geocoder=GeocoderConfig(
                api_key=_read_optional_str_env("GOOGLE_MAPS_API_KEY"),
                timeout_seconds=_read_positive_float_env("GEOCODING_TIMEOUT_SECONDS", 10.0),
                min_delay_seconds=_read_non_negative_float_env("GEOCODING_MIN_DELAY_SECONDS", 0.2),
            ),
            dedup=DedupConfig(
                fuzzy_threshold=_read_positive_float_env("DEDUP_FUZZY_THRESHOLD", 0.8),
                date_tolerance_hours=_read_positive_float_env("DEDUP_DATE_TOLERANCE_HOURS", 24.0),
                intra_batch=_read_bool_env("INGEST_INTRA_BATCH_DEDUP", True),
            ),
            database_path=Path(database_path) if database_path else None,
            dry_run_sample_size=_read_positive_int_env("INGEST_DRY_RUN_SAMPLE_SIZE", 3),
        )
