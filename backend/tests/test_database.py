from datetime import datetime, timedelta, timezone

import pytest

from database import EventStore, build_source_hash, classify_source
from ingest.config import CITY_TIMEZONE
from ingest.errors import PermanentInputError
from ingest.models import EventStatus, ExtractedEvent, Source, SourceKind

STARTS = datetime(2030, 7, 4, 21, 0, tzinfo=CITY_TIMEZONE)


def _base_event(**overrides):
    data = {
        "title": "Fourth of July Fireworks",
        "description": "Fireworks over the bay",
        "starts_at": STARTS,
        "venue_name": "Pier 39",
        "address": "Beach St & The Embarcadero",
        "is_free": True,
        "categories": ["festival", "family"],
        "source_url": "https://www.sfgate.com/events/fireworks",
    }
    data.update(overrides)
    return ExtractedEvent(**data)


def test_upsert_twice_yields_one_row(store):
    first, created_first = store.upsert_event(_base_event())
    second, created_second = store.upsert_event(_base_event())

    assert created_first is True
    assert created_second is False
    assert first.id == second.id
    assert store.count_events() == 1


def test_upsert_updates_description_in_place(store):
    original, _ = store.upsert_event(_base_event())
    updated, created = store.upsert_event(_base_event(description="Now with a drone show"))

    assert created is False
    assert updated.id == original.id
    assert updated.description == "Now with a drone show"
    assert store.count_events() == 1


def test_update_keeps_identity_status_and_coordinates(store):
    source = store.upsert_source("https://www.sfgate.com/events/fireworks")
    original, _ = store.upsert_event(_base_event(lat=37.8087, lng=-122.4098), source.id)
    store.set_event_status(original.id, EventStatus.REJECTED)

    updated, _ = store.upsert_event(_base_event(price_min=0, price_max=0))

    assert updated.source_hash == original.source_hash
    assert updated.source_id == source.id
    assert updated.status == EventStatus.REJECTED
    assert updated.lat == pytest.approx(37.8087)
    assert updated.lng == pytest.approx(-122.4098)


def test_title_change_creates_new_row(store):
    store.upsert_event(_base_event())
    store.upsert_event(_base_event(title="4th of July Fireworks"))

    assert store.count_events() == 2


def test_round_trip_preserves_fields(store):
    stored, _ = store.upsert_event(_base_event())

    assert stored.starts_at == STARTS
    assert stored.starts_at.utcoffset() == timedelta(hours=-7)
    assert stored.categories == ["festival", "family"]
    assert stored.is_free is True
    assert stored.status == EventStatus.ACTIVE
    assert stored.source_hash == build_source_hash(_base_event())


def test_source_hash_format():
    event = _base_event(venue_name=None)
    assert build_source_hash(event) == f"Fourth of July Fireworks|{STARTS.isoformat()}|"


def test_upsert_source_is_keyed_by_host(store):
    first = store.upsert_source("https://www.sfgate.com/events/a")
    second = store.upsert_source("https://sfgate.com/things-to-do/b")

    assert first.id == second.id
    assert first.url == "https://sfgate.com"
    assert first.label == "sfgate.com"
    assert first.kind == SourceKind.MEDIA
    assert store.count_sources() == 1


def test_get_source_returns_model(store):
    created = store.upsert_source("https://www.eventbrite.com/e/123")

    source = store.get_source(created.id)

    assert isinstance(source, Source)
    assert source.kind == SourceKind.TICKET_SITE
    assert source.last_seen is not None
    assert store.get_source("missing") is None


def test_upsert_source_rejects_url_without_host(store):
    with pytest.raises(PermanentInputError):
        store.upsert_source("not a url")


@pytest.mark.parametrize(
    "host, kind",
    [
        ("sf.gov", SourceKind.OFFICIAL_CAL),
        ("sfrecpark.org", SourceKind.OFFICIAL_CAL),
        ("data.ca.gov", SourceKind.OFFICIAL_CAL),
        ("eventbrite.com", SourceKind.TICKET_SITE),
        ("events.eventbrite.com", SourceKind.TICKET_SITE),
        ("funcheap.com", SourceKind.MEDIA),
        ("someones-blog.net", SourceKind.BLOG),
    ],
)
def test_classify_source(host, kind):
    assert classify_source(host) == kind


def test_source_confidence_follows_source_kind(store):
    official = store.upsert_source("https://sf.gov/events")
    blog = store.upsert_source("https://someones-blog.net/post")

    from_official, _ = store.upsert_event(_base_event(), official.id)
    from_blog, _ = store.upsert_event(_base_event(title="Blog Picnic"), blog.id)

    assert from_official.source_confidence == pytest.approx(0.9)
    assert from_blog.source_confidence == pytest.approx(0.6)


def test_find_active_events_between_filters_status_and_range(store):
    inside, _ = store.upsert_event(_base_event())
    store.upsert_event(_base_event(title="Next Week", starts_at=STARTS + timedelta(days=7)))
    archived, _ = store.upsert_event(_base_event(title="Archived Show"))
    store.set_event_status(archived.id, EventStatus.ARCHIVED)

    found = store.find_active_events_between(STARTS - timedelta(hours=1), STARTS + timedelta(hours=1))

    assert [event.id for event in found] == [inside.id]


def test_missing_coordinates_and_update(store):
    without, _ = store.upsert_event(_base_event())
    store.upsert_event(_base_event(title="No Venue", venue_name=None))
    store.upsert_event(_base_event(title="Has Coords", lat=37.77, lng=-122.42))

    missing = store.get_events_missing_coordinates()
    assert [event.id for event in missing] == [without.id]

    assert store.update_event_coordinates(without.id, 37.8, -122.41) is True
    assert store.get_events_missing_coordinates() == []
    assert store.get_event(without.id).lat == pytest.approx(37.8)


def test_archive_past_events(store):
    now = datetime.now(timezone.utc)
    old, _ = store.upsert_event(_base_event(title="Old Show", starts_at=now - timedelta(days=30)))
    recent, _ = store.upsert_event(_base_event(title="Recent Show", starts_at=now - timedelta(days=2)))
    future, _ = store.upsert_event(_base_event(title="Future Show", starts_at=now + timedelta(days=2)))

    archived = store.archive_past_events(days=7)

    assert archived == 1
    assert store.get_event(old.id).status == EventStatus.ARCHIVED
    assert store.get_event(recent.id).status == EventStatus.ACTIVE
    assert store.get_event(future.id).status == EventStatus.ACTIVE


def test_store_reopens_existing_database(tmp_path):
    path = tmp_path / "events.db"
    EventStore(path).upsert_event(_base_event())

    assert EventStore(path).count_events() == 1
