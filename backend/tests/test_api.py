import sqlite3
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

import main
from database import EventStore
from ingest.config import CITY_TIMEZONE, IngestionConfig
from ingest.models import ExtractedEvent


def _base_event(**overrides):
    data = {
        "title": "Sunday Streets Mission",
        "starts_at": datetime.now(CITY_TIMEZONE) + timedelta(days=1),
        "venue_name": "Valencia Street",
        "lat": 37.76,
        "lng": -122.42,
        "is_free": True,
        "categories": ["community", "family"],
        "source_url": "https://sundaystreetssf.com/events",
    }
    data.update(overrides)
    return ExtractedEvent(**data)


@pytest.fixture
def client(store, tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "startup.db"))
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_config] = lambda: IngestionConfig()
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def test_store_is_created_once_at_startup(tmp_path, monkeypatch):
    path = tmp_path / "startup.db"
    monkeypatch.setenv("DATABASE_PATH", str(path))

    with TestClient(main.app) as test_client:
        assert main.app.state.store.db_path == path
        main.app.state.store.upsert_event(_base_event())
        body = test_client.get("/api/health").json()

    assert body["events_count"] == 1
    assert EventStore(path).count_events() == 1


def test_health_reports_counts(client, store):
    store.upsert_event(_base_event())

    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["events_count"] == 1
    assert body["sources_count"] == 0


def test_health_reports_broken_store(client, store, monkeypatch):
    def broken():
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(store, "count_events", broken)

    response = client.get("/api/health")

    assert response.status_code == 500
    assert response.json()["status"] == "unhealthy"


def test_categories(client):
    body = client.get("/api/categories").json()

    slugs = [category["slug"] for category in body["categories"]]
    assert slugs == ["music", "festival", "parade", "food", "arts", "tech", "sports", "family", "market", "community"]
    assert {"slug": "pet-friendly", "name": "Pet Friendly"} in body["tags"]


def test_ingest_rejects_unsupported_city(client):
    response = client.post("/api/ingest/run", json={"city": "los-angeles"})

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Unsupported city"
    assert "los-angeles" in body["detail"]


def test_ingest_dry_run_without_credentials_degrades(client):
    response = client.post("/api/ingest/run", json={"city": "san-francisco", "dry_run": True})

    assert response.status_code == 200
    body = response.json()
    assert body["dry_run"] is True
    assert body["discovered"] == 0
    assert body["fetched"] == 0
    assert "nothing persisted" in body["summary"]


def test_ingest_unexpected_failure_is_500(client, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(main, "run_ingestion", explode)

    response = client.post("/api/ingest/run", json={"dry_run": False})

    assert response.status_code == 500
    assert response.json() == {"message": "Ingestion failed", "detail": "database is locked"}


def test_events_query(client, store):
    store.upsert_event(_base_event())
    store.upsert_event(_base_event(title="Paid Gala", is_free=False, price_min=150, price_max=300,
                                   categories=["arts"]))

    body = client.get("/api/events").json()
    assert {event["title"] for event in body["events"]} == {"Sunday Streets Mission", "Paid Gala"}
    assert body["next_cursor"] is None
    assert body["last_updated"]

    free = client.get("/api/events", params={"price": "free"}).json()
    assert [event["title"] for event in free["events"]] == ["Sunday Streets Mission"]

    arts = client.get("/api/events", params={"categories": "arts"}).json()
    assert [event["title"] for event in arts["events"]] == ["Paid Gala"]

    searched = client.get("/api/events", params={"q": "valencia"}).json()
    assert len(searched["events"]) == 2


def test_events_query_rejects_unknown_price(client):
    assert client.get("/api/events", params={"price": "cheap"}).status_code == 422


def test_get_event_by_id(client, store):
    stored, _ = store.upsert_event(_base_event())

    response = client.get(f"/api/events/{stored.id}")

    assert response.status_code == 200
    assert response.json()["title"] == "Sunday Streets Mission"
    assert client.get("/api/events/does-not-exist").status_code == 404


def test_geocode_backfill_without_key(client, store):
    store.upsert_event(_base_event(lat=None, lng=None))

    response = client.post("/api/admin/geocode-events")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["success"] == 0
    assert body["failed"] == 1
