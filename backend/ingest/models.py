"""
Pydantic Models for the ingestion pipeline

Defines the data structures passed between stages: fetched pages, event posts,
extracted events, persisted events, sources and run results.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

from dateutil.parser import isoparse
from pydantic import BaseModel, Field, field_validator, model_validator

from .config import CITY_TIMEZONE


class EventCategory(str, Enum):
    """Fixed category taxonomy."""
    MUSIC = "music"
    FESTIVAL = "festival"
    PARADE = "parade"
    FOOD = "food"
    ARTS = "arts"
    TECH = "tech"
    SPORTS = "sports"
    FAMILY = "family"
    MARKET = "market"
    COMMUNITY = "community"


CATEGORY_SLUGS = frozenset(category.value for category in EventCategory)


class EventStatus(str, Enum):
    """Lifecycle status of a stored event."""
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    REJECTED = "REJECTED"


class SourceKind(str, Enum):
    """What kind of site an event came from."""
    OFFICIAL_CAL = "OFFICIAL_CAL"
    TICKET_SITE = "TICKET_SITE"
    MEDIA = "MEDIA"
    BLOG = "BLOG"


def to_city_time(value: Any) -> Optional[datetime]:
    """
    Parse a datetime (or ISO string) into an aware America/Los_Angeles datetime.

    Naive values are interpreted as local city time.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        parsed = isoparse(value.strip())
    elif isinstance(value, datetime):
        parsed = value
    else:
        raise ValueError("datetime must be an ISO-8601 string or datetime")

    try:
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=CITY_TIMEZONE)
        else:
            parsed = parsed.astimezone(CITY_TIMEZONE)
        # stored as UTC, so that form must exist too
        parsed.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"datetime out of range: {value}") from e
    return parsed


def normalize_http_url(value: Any) -> Optional[str]:
    """Return the URL if it is an absolute http(s) URL, otherwise None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    parsed = urlparse(text)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return text


class SearchResult(BaseModel):
    """A single organic result from the search oracle."""
    url: str
    title: str = ""
    snippet: str = ""
    source: str = Field("unknown", description="Host without 'www.'")


class FetchedContent(BaseModel):
    """Raw HTML retrieved for one URL."""
    url: str
    html: str
    status_code: int
    content_type: Optional[str] = None
    last_modified: Optional[str] = None
    checksum: str = Field(..., description="Rolling hash for change detection (not cryptographic)")


class EventPost(BaseModel):
    """A fragment of a page believed to describe one event."""
    title: str
    description: Optional[str] = None
    full_text: str
    html: str = ""


class ExtractedEvent(BaseModel):
    """The canonical pipeline output unit."""
    title: str = Field(..., description="Event title")
    description: Optional[str] = None
    starts_at: datetime = Field(..., description="Start, America/Los_Angeles")
    ends_at: Optional[datetime] = None
    venue_name: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = Field(None, description="Populated by the geocoder")
    lng: Optional[float] = Field(None, description="Populated by the geocoder")
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    currency: str = "USD"
    is_free: bool = False
    ticket_url: Optional[str] = None
    image_url: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    source_url: str = Field(..., description="Page the event was extracted from")

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        title = " ".join(value.split())
        if not title:
            raise ValueError("title must not be empty")
        return title

    @field_validator("description", "venue_name", "address", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("starts_at", mode="before")
    @classmethod
    def _parse_starts_at(cls, value: Any) -> datetime:
        parsed = to_city_time(value)
        if parsed is None:
            raise ValueError("starts_at is required")
        return parsed

    @field_validator("ends_at", mode="before")
    @classmethod
    def _parse_ends_at(cls, value: Any) -> Optional[datetime]:
        return to_city_time(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _default_currency(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return "USD"
        return str(value).strip().upper()

    @field_validator("is_free", mode="before")
    @classmethod
    def _none_is_not_free(cls, value: Any) -> bool:
        return False if value is None else value

    @field_validator("ticket_url", "image_url", mode="before")
    @classmethod
    def _valid_uri_or_none(cls, value: Any) -> Optional[str]:
        return normalize_http_url(value)

    @field_validator("categories", mode="before")
    @classmethod
    def _normalize_categories(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise ValueError("categories must be a list of slugs")
        seen: list[str] = []
        for item in value:
            slug = str(item).strip().lower()
            if slug and slug not in seen:
                seen.append(slug)
        return seen

    @field_validator("source_url")
    @classmethod
    def _source_url_required(cls, value: str) -> str:
        url = value.strip()
        if not url:
            raise ValueError("source_url is required")
        return url

    @model_validator(mode="after")
    def _price_order(self) -> "ExtractedEvent":
        if (
            self.price_min is not None
            and self.price_max is not None
            and self.price_min > self.price_max
        ):
            raise ValueError("price_min must be <= price_max")
        return self


class PersistedEvent(ExtractedEvent):
    """An event as stored in the database."""
    id: str
    source_id: Optional[str] = None
    source_hash: str
    status: EventStatus = EventStatus.ACTIVE
    source_confidence: float = Field(0.6, ge=0.0, le=1.0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "PersistedEvent":
        """Build from a sqlite row dict (categories stored as JSON text)."""
        data = dict(row)
        categories = data.get("categories")
        if isinstance(categories, str):
            data["categories"] = json.loads(categories) if categories else []
        data["is_free"] = bool(data.get("is_free"))
        return cls(**data)


class Source(BaseModel):
    """A site events were ingested from, keyed by host."""
    id: Optional[str] = None
    url: str
    label: str
    kind: SourceKind = SourceKind.BLOG
    last_seen: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "Source":
        return cls(**dict(row))


class GeocodingRequest(BaseModel):
    venue_name: str
    address: Optional[str] = None


class GeocodingResult(BaseModel):
    lat: float
    lng: float
    formatted_address: str = ""


class DeduplicationResult(BaseModel):
    is_duplicate: bool
    confidence: float = 0.0
    existing_event_id: Optional[str] = None
    reason: Optional[str] = None


class IngestionResult(BaseModel):
    """Counts reported by one ingestion run."""
    city: str
    dry_run: bool
    discovered: int = 0
    fetched: int = 0
    extracted: int = 0
    geocoded: int = 0
    duplicates: int = 0
    new_events: int = 0
    upserted: int = 0
    failed_upserts: int = 0
    duration_seconds: float = 0.0
    summary: str = ""
    sample_events: list[ExtractedEvent] = Field(default_factory=list)

    def build_summary(self) -> str:
        mode = "Dry run" if self.dry_run else "Ingestion"
        text = (
            f"{mode} for {self.city}: {self.discovered} URLs discovered, "
            f"{self.fetched} fetched, {self.extracted} events extracted, "
            f"{self.geocoded} geocoded, {self.duplicates} duplicates, "
            f"{self.new_events} new"
        )
        if self.dry_run:
            return text + " (nothing persisted)."
        text += f", {self.upserted} upserted"
        if self.failed_upserts:
            text += f", {self.failed_upserts} failed"
        return text + "."
