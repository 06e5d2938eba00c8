from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from ingest.config import CITY_TIMEZONE
from ingest.models import ExtractedEvent, IngestionResult, normalize_http_url, to_city_time


def test_to_city_time_naive_is_local():
    parsed = to_city_time("2030-07-04T21:30:00")

    assert parsed.tzinfo is CITY_TIMEZONE
    assert parsed.hour == 21
    assert parsed.utcoffset().total_seconds() == -7 * 3600


def test_to_city_time_converts_aware_values():
    parsed = to_city_time(datetime(2030, 7, 5, 4, 30, tzinfo=timezone.utc))

    assert (parsed.day, parsed.hour) == (4, 21)


def test_to_city_time_blank_and_invalid():
    assert to_city_time(None) is None
    assert to_city_time("  ") is None
    with pytest.raises(ValueError):
        to_city_time(12345)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("https://www.eventbrite.com/e/123", "https://www.eventbrite.com/e/123"),
        (" http://sfjazz.org ", "http://sfjazz.org"),
        ("ftp://files.example.com/x", None),
        ("/relative/path", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_http_url(value, expected):
    assert normalize_http_url(value) == expected


def test_extracted_event_normalization():
    event = ExtractedEvent(
        title="  Pride   Parade ",
        starts_at="2030-06-29T10:30:00",
        venue_name="  ",
        currency=None,
        is_free=None,
        categories="Parade",
        source_url="https://sfpride.org",
    )

    assert event.title == "Pride Parade"
    assert event.venue_name is None
    assert event.currency == "USD"
    assert event.is_free is False
    assert event.categories == ["parade"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "   "},
        {"starts_at": None},
        {"source_url": " "},
        {"price_min": 40, "price_max": 20},
    ],
)
def test_extracted_event_rejects_invalid(overrides):
    data = {
        "title": "Pride Parade",
        "starts_at": "2030-06-29T10:30:00",
        "source_url": "https://sfpride.org",
    }
    data.update(overrides)
    with pytest.raises(ValidationError):
        ExtractedEvent(**data)


def test_build_summary():
    dry = IngestionResult(city="san-francisco", dry_run=True, discovered=12, fetched=3, new_events=2)
    assert dry.build_summary().endswith("2 new (nothing persisted).")
    assert "3 fetched" in dry.build_summary()

    real = IngestionResult(city="san-francisco", dry_run=False, upserted=4, failed_upserts=1)
    assert real.build_summary().endswith("4 upserted, 1 failed.")

    clean = IngestionResult(city="san-francisco", dry_run=False, upserted=4)
    assert "failed" not in clean.build_summary()


@pytest.mark.parametrize(
    "starts_at",
    ["0001-01-01T00:00:00+14:00", "9999-12-31T23:00:00-10:00", "9999-12-31T23:00:00"],
)
def test_out_of_range_start_is_validation_error(starts_at):
    with pytest.raises(ValidationError):
        ExtractedEvent(title="Pride Parade", starts_at=starts_at, source_url="https://sfpride.org")


@pytest.mark.parametrize("categories", [5, True, {"music": 1}])
def test_non_list_categories_are_validation_error(categories):
    with pytest.raises(ValidationError):
        ExtractedEvent(
            title="Pride Parade",
            starts_at="2030-06-29T10:30:00",
            categories=categories,
            source_url="https://sfpride.org",
        )
