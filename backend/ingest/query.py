"""
Event query interface.

Filters stored ACTIVE events for the map UI: bounding box, date range or
preset, categories, price bracket, time of day, free text and a minimum source
confidence. Coarse filters run in SQL, the rest here.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .config import CITY_TIMEZONE, BoundingBox
from .logging_utils import get_logger
from .models import PersistedEvent, to_city_time

logger = get_logger(__name__)

DEFAULT_LIMIT = 200
DEFAULT_MIN_CONFIDENCE = 0.4


class DatePreset(str, Enum):
    TODAY = "today"
    THREE_DAYS = "3d"
    SEVEN_DAYS = "7d"


class PriceBracket(str, Enum):
    ANY = "any"
    FREE = "free"
    UNDER_20 = "lt20"
    FROM_20_TO_50 = "20to50"
    OVER_50 = "gt50"


class TimeOfDay(str, Enum):
    ANY = "any"
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    LATE = "late"


class EventQuery(BaseModel):
    """Parameters of GET /api/events."""
    bbox: Optional[str] = Field(None, description="minLng,minLat,maxLng,maxLat")
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    preset: DatePreset = DatePreset.THREE_DAYS
    categories: list[str] = Field(default_factory=list)
    price: PriceBracket = PriceBracket.ANY
    tod: TimeOfDay = TimeOfDay.ANY
    q: str = ""
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    limit: int = Field(DEFAULT_LIMIT, ge=1)


def parse_bbox(value: Optional[str]) -> Optional[BoundingBox]:
    """Parse 'minLng,minLat,maxLng,maxLat'. Anything malformed means no bbox."""
    if not value:
        return None
    parts = value.split(",")
    if len(parts) != 4:
        return None
    try:
        min_lng, min_lat, max_lng, max_lat = (float(part) for part in parts)
    except ValueError:
        return None
    return BoundingBox(min_lat=min_lat, min_lng=min_lng, max_lat=max_lat, max_lng=max_lng)


def date_range_from_preset(
    preset: DatePreset, now: Optional[datetime] = None
) -> tuple[datetime, datetime]:
    now = now or datetime.now(CITY_TIMEZONE)
    if preset == DatePreset.TODAY:
        return now, now.replace(hour=23, minute=59, second=59, microsecond=999999)
    if preset == DatePreset.SEVEN_DAYS:
        return now, now + timedelta(days=7)
    return now, now + timedelta(days=3)


def resolve_date_range(query: EventQuery, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Explicit start/end win when both are given, otherwise the preset applies."""
    if query.start is not None and query.end is not None:
        return to_city_time(query.start), to_city_time(query.end)
    return date_range_from_preset(query.preset, now)


def matches_price(event: PersistedEvent, price: PriceBracket) -> bool:
    low_raw, high_raw = event.price_min, event.price_max
    if price == PriceBracket.FREE:
        return event.is_free or ((low_raw or 0) == 0 and (high_raw or 0) == 0)
    if price == PriceBracket.UNDER_20:
        return (low_raw is not None and low_raw < 20) or (high_raw is not None and high_raw < 20)
    if price == PriceBracket.FROM_20_TO_50:
        low = low_raw if low_raw is not None else 0
        if high_raw is not None:
            high = high_raw
        else:
            high = low_raw if low_raw is not None else 0
        return high >= 20 and low <= 50
    if price == PriceBracket.OVER_50:
        return (low_raw is not None and low_raw > 50) or (high_raw is not None and high_raw > 50)
    return True


def matches_time_of_day(event: PersistedEvent, tod: TimeOfDay) -> bool:
    hour = event.starts_at.astimezone(CITY_TIMEZONE).hour
    if tod == TimeOfDay.MORNING:
        return 5 <= hour < 12
    if tod == TimeOfDay.AFTERNOON:
        return 12 <= hour < 17
    if tod == TimeOfDay.EVENING:
        return 17 <= hour < 21
    if tod == TimeOfDay.LATE:
        return hour >= 21 or hour < 5
    return True


def matches_categories(event: PersistedEvent, categories: list[str]) -> bool:
    """Every requested slug must be present."""
    return all(slug in event.categories for slug in categories)


def matches_text(event: PersistedEvent, q: str) -> bool:
    if not q:
        return True
    haystack = " ".join(
        [
            event.title,
            event.description or "",
            event.venue_name or "",
            event.address or "",
            " ".join(event.categories),
        ]
    ).lower()
    return q.lower() in haystack


def query_events(store, query: EventQuery, now: Optional[datetime] = None) -> dict:
    """Run a query against an EventStore. Returns {events, next_cursor, last_updated}."""
    start, end = resolve_date_range(query, now)
    bbox = parse_bbox(query.bbox)
    if query.bbox and bbox is None:
        logger.warning("Ignoring malformed bbox '%s'", query.bbox)
    categories = [slug.strip().lower() for slug in query.categories if slug.strip()]

    events = [
        event
        for event in store.fetch_events(
            start=start, end=end, bbox=bbox, min_confidence=query.min_confidence
        )
        if matches_categories(event, categories)
        and matches_price(event, query.price)
        and matches_time_of_day(event, query.tod)
        and matches_text(event, query.q)
    ]

    last_updated = store.last_updated() or datetime.now(CITY_TIMEZONE)
    return {
        "events": events[: query.limit],
        "next_cursor": None,
        "last_updated": last_updated.isoformat(),
    }
