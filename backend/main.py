"""
SF Events Backend API

FastAPI application exposing the ingestion trigger and the event query
interface for the San Francisco events map.
"""

import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from database import EventStore
from ingest.config import CATEGORIES, SUPPORTED_CITY, TAGS, IngestionConfig
from ingest.errors import UnsupportedCityError
from ingest.logging_utils import get_logger
from ingest.models import IngestionResult, PersistedEvent
from ingest.pipeline import backfill_coordinates, run_ingestion
from ingest.query import (
    DEFAULT_LIMIT,
    DEFAULT_MIN_CONFIDENCE,
    DatePreset,
    EventQuery,
    PriceBracket,
    TimeOfDay,
    query_events,
)

# Load environment variables
load_dotenv()

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.store = EventStore(IngestionConfig.from_env().database_path)
    logger.info("Event store at %s", app.state.store.db_path)
    yield


# Initialize FastAPI
app = FastAPI(
    lifespan=lifespan,
    title="SF Events API",
    description="Public event listings for San Francisco",
    version="1.0.0",
)

# CORS middleware (allow the map UI to connect)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production: restrict to your domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_config() -> IngestionConfig:
    return IngestionConfig.from_env()


def get_store(request: Request) -> EventStore:
    """The store created once at startup."""
    return request.app.state.store


def _error(status_code: int, message: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "detail": detail})


# ============ Pydantic Models for API ============


class IngestRunRequest(BaseModel):
    city: str = SUPPORTED_CITY
    dry_run: bool = True


class EventsResponse(BaseModel):
    events: list[PersistedEvent]
    next_cursor: Optional[str] = None
    last_updated: str


class CategoryResponse(BaseModel):
    slug: str
    name: str


class CategoriesResponse(BaseModel):
    categories: list[CategoryResponse]
    tags: list[CategoryResponse]


class HealthResponse(BaseModel):
    status: str
    database: str
    timestamp: str
    events_count: int
    sources_count: int


class BackfillResponse(BaseModel):
    message: str
    total: int
    success: int
    failed: int
    results: list[dict] = Field(default_factory=list)


# ============ Health Check ============


@app.get("/api/health", response_model=HealthResponse)
async def health(store: EventStore = Depends(get_store)):
    """Health check endpoint."""
    try:
        events_count = store.count_events()
        sources_count = store.count_sources()
    except sqlite3.Error as e:
        logger.error("Health check failed: %s", e)
        return JSONResponse(
            status_code=500,
            content={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
    return {
        "status": "healthy",
        "database": "connected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "events_count": events_count,
        "sources_count": sources_count,
    }


# ============ Ingestion ============


@app.post("/api/ingest/run", response_model=IngestionResult)
async def ingest_run(
    payload: IngestRunRequest,
    config: IngestionConfig = Depends(get_config),
    store: EventStore = Depends(get_store),
):
    """Run one ingestion for the supported city (dry run by default)."""
    try:
        return await run_in_threadpool(
            run_ingestion, payload.city, payload.dry_run, config, store
        )
    except UnsupportedCityError as e:
        return _error(400, "Unsupported city", str(e))
    except Exception as e:
        logger.exception("Ingestion run failed")
        return _error(500, "Ingestion failed", str(e))


# ============ Events Endpoints ============


@app.get("/api/events", response_model=EventsResponse)
async def get_events(
    bbox: Optional[str] = Query(default=None, description="minLng,minLat,maxLng,maxLat"),
    start: Optional[datetime] = Query(default=None, description="ISO date-time"),
    end: Optional[datetime] = Query(default=None, description="ISO date-time"),
    preset: DatePreset = Query(default=DatePreset.THREE_DAYS),
    categories: Optional[str] = Query(default=None, description="Comma-separated slugs"),
    price: PriceBracket = Query(default=PriceBracket.ANY),
    tod: TimeOfDay = Query(default=TimeOfDay.ANY),
    q: str = Query(default=""),
    min_confidence: float = Query(default=DEFAULT_MIN_CONFIDENCE, ge=0.0, le=1.0),
    limit: int = Query(default=DEFAULT_LIMIT, ge=1, le=1000),
    store: EventStore = Depends(get_store),
):
    """Get ACTIVE events with optional filters."""
    query = EventQuery(
        bbox=bbox,
        start=start,
        end=end,
        preset=preset,
        categories=[slug for slug in (categories or "").split(",") if slug],
        price=price,
        tod=tod,
        q=q,
        min_confidence=min_confidence,
        limit=limit,
    )
    return query_events(store, query)


@app.get("/api/events/{event_id}", response_model=PersistedEvent)
async def get_event(event_id: str, store: EventStore = Depends(get_store)):
    """Get a single event by ID."""
    event = store.get_event(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.get("/api/categories", response_model=CategoriesResponse)
async def get_categories():
    """Fixed category taxonomy and tag list."""
    return {
        "categories": [{"slug": slug, "name": name} for slug, name in CATEGORIES.items()],
        "tags": [{"slug": slug, "name": name} for slug, name in TAGS.items()],
    }


# ============ Admin ============


@app.post("/api/admin/geocode-events", response_model=BackfillResponse)
async def geocode_events(
    config: IngestionConfig = Depends(get_config),
    store: EventStore = Depends(get_store),
):
    """Geocode stored events that are missing coordinates."""
    try:
        return await run_in_threadpool(backfill_coordinates, store, config)
    except Exception as e:
        logger.exception("Geocoding backfill failed")
        return _error(500, "Geocoding backfill failed", str(e))


# ============ Main Entry Point ============


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
