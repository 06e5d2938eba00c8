"""
Database module for the SF events backend

SQLite schema plus the EventStore used by the ingestion pipeline, the query
interface and the cron scripts.
"""

import json
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from ingest.config import MEDIA_HOSTS, OFFICIAL_HOSTS, TICKET_HOSTS, BoundingBox
from ingest.errors import PermanentInputError, PersistenceConflict
from ingest.logging_utils import get_logger
from ingest.models import EventStatus, ExtractedEvent, PersistedEvent, Source, SourceKind

# Database path (relative to backend folder, can be overridden via env)
DEFAULT_DB_PATH = Path(__file__).parent / "data" / "events.db"

SOURCE_CONFIDENCE = {
    SourceKind.OFFICIAL_CAL: 0.9,
    SourceKind.TICKET_SITE: 0.8,
    SourceKind.MEDIA: 0.7,
    SourceKind.BLOG: 0.6,
}

logger = get_logger(__name__)


def get_db_path() -> Path:
    """Get database path, creating data directory if needed."""
    db_path = Path(os.getenv("DATABASE_PATH", str(DEFAULT_DB_PATH)))
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text so that SQL string comparison matches time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def build_source_hash(event: ExtractedEvent) -> str:
    """Idempotency key: title|starts_at|venue_name."""
    return f"{event.title}|{event.starts_at.isoformat()}|{event.venue_name or ''}"


def _host_matches(host: str, fragment: str) -> bool:
    fragment = fragment.lstrip(".")
    return host == fragment or host.endswith("." + fragment)


def source_host(source_url: str) -> str:
    """Host of a URL without 'www.'."""
    host = (urlparse(source_url).hostname or "").lower()
    if not host:
        raise PermanentInputError(f"Source URL has no host: {source_url!r}")
    return host[4:] if host.startswith("www.") else host


def classify_source(host: str) -> SourceKind:
    if any(_host_matches(host, fragment) for fragment in OFFICIAL_HOSTS):
        return SourceKind.OFFICIAL_CAL
    if any(_host_matches(host, fragment) for fragment in TICKET_HOSTS):
        return SourceKind.TICKET_SITE
    if any(_host_matches(host, fragment) for fragment in MEDIA_HOSTS):
        return SourceKind.MEDIA
    return SourceKind.BLOG


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        url TEXT NOT NULL UNIQUE,
        label TEXT NOT NULL,
        kind TEXT NOT NULL DEFAULT 'BLOG',
        last_seen TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        source_id TEXT REFERENCES sources(id),
        source_hash TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        description TEXT,
        starts_at TEXT NOT NULL,
        ends_at TEXT,
        venue_name TEXT,
        address TEXT,
        lat REAL,
        lng REAL,
        price_min REAL,
        price_max REAL,
        currency TEXT DEFAULT 'USD',
        is_free INTEGER DEFAULT 0,
        ticket_url TEXT,
        image_url TEXT,
        categories TEXT DEFAULT '[]',
        source_url TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'ACTIVE',
        source_confidence REAL DEFAULT 0.6,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_status_start ON events(status, starts_at)",
    "CREATE INDEX IF NOT EXISTS idx_events_source ON events(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_coords ON events(lat, lng)",
]


class EventStore:
    """
    SQLite-backed store for sources and events.

    One connection per operation; the store itself holds no open handles, so a
    single instance can be shared by the API and the pipeline.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_db()

    def init_db(self) -> None:
        """Initialize database with schema."""
        with self.get_connection() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()
        logger.info("Database initialized at %s", self.db_path)

    @contextmanager
    def get_connection(self):
        """Get database connection as context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # ============ Source Operations ============

    def upsert_source(self, source_url: str) -> Source:
        """Create the source for a URL's host, or refresh last_seen if it exists."""
        host = source_host(source_url)
        url = f"https://{host}"
        now = to_db_time(_utcnow())

        try:
            with self.get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO sources (id, url, label, kind, last_seen)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(url) DO UPDATE SET last_seen = excluded.last_seen
                    """,
                    (str(uuid.uuid4()), url, host, classify_source(host).value, now),
                )
                conn.commit()
                row = conn.execute("SELECT * FROM sources WHERE url = ?", (url,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceConflict(f"Failed to upsert source {url}: {e}") from e
        return Source.from_row(row)

    def get_source(self, source_id: str) -> Optional[Source]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
            return Source.from_row(row) if row else None

    # ============ Event Operations ============

    def upsert_event(
        self, event: ExtractedEvent, source_id: Optional[str] = None
    ) -> tuple[PersistedEvent, bool]:
        """
        Insert or refresh an event keyed by its source hash.

        Returns (stored event, created). The update path refreshes the mutable
        fields only; source_hash, source_id and status never change, and stored
        coordinates are kept when the new event has none.
        """
        source_hash = build_source_hash(event)
        now = to_db_time(_utcnow())
        confidence = SOURCE_CONFIDENCE[SourceKind.BLOG]
        if source_id:
            source = self.get_source(source_id)
            if source:
                confidence = SOURCE_CONFIDENCE[source.kind]

        try:
            with self.get_connection() as conn:
                existing = conn.execute(
                    "SELECT id FROM events WHERE source_hash = ?", (source_hash,)
                ).fetchone()
                conn.execute(
                    """
                    INSERT INTO events (
                        id, source_id, source_hash, title, description, starts_at, ends_at,
                        venue_name, address, lat, lng, price_min, price_max, currency,
                        is_free, ticket_url, image_url, categories, source_url, status,
                        source_confidence, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source_hash) DO UPDATE SET
                        description = excluded.description,
                        starts_at = excluded.starts_at,
                        ends_at = excluded.ends_at,
                        venue_name = excluded.venue_name,
                        address = excluded.address,
                        lat = COALESCE(excluded.lat, events.lat),
                        lng = COALESCE(excluded.lng, events.lng),
                        price_min = excluded.price_min,
                        price_max = excluded.price_max,
                        currency = excluded.currency,
                        is_free = excluded.is_free,
                        ticket_url = excluded.ticket_url,
                        image_url = excluded.image_url,
                        categories = excluded.categories,
                        updated_at = excluded.updated_at
                    """,
                    (
                        str(uuid.uuid4()),
                        source_id,
                        source_hash,
                        event.title,
                        event.description,
                        to_db_time(event.starts_at),
                        to_db_time(event.ends_at),
                        event.venue_name,
                        event.address,
                        event.lat,
                        event.lng,
                        event.price_min,
                        event.price_max,
                        event.currency,
                        1 if event.is_free else 0,
                        event.ticket_url,
                        event.image_url,
                        json.dumps(event.categories),
                        event.source_url,
                        EventStatus.ACTIVE.value,
                        confidence,
                        now,
                        now,
                    ),
                )
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM events WHERE source_hash = ?", (source_hash,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceConflict(f"Failed to upsert event '{event.title}': {e}") from e

        return PersistedEvent.from_row(dict(row)), existing is None

    def get_event(self, event_id: str) -> Optional[PersistedEvent]:
        """Get event by ID."""
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
            return PersistedEvent.from_row(dict(row)) if row else None

    def find_active_events_between(self, start: datetime, end: datetime) -> list[PersistedEvent]:
        """ACTIVE events whose start lies in [start, end]."""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                WHERE status = ? AND starts_at >= ? AND starts_at <= ?
                ORDER BY starts_at ASC
                """,
                (EventStatus.ACTIVE.value, to_db_time(start), to_db_time(end)),
            ).fetchall()
        return [PersistedEvent.from_row(dict(row)) for row in rows]

    def fetch_events(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        bbox: Optional[BoundingBox] = None,
        min_confidence: float = 0.0,
        status: EventStatus = EventStatus.ACTIVE,
    ) -> list[PersistedEvent]:
        """Coarse SQL pre-filter for the query interface, ordered by start."""
        query = "SELECT * FROM events WHERE status = ? AND source_confidence >= ?"
        params: list = [status.value, min_confidence]

        if start is not None:
            query += " AND starts_at >= ?"
            params.append(to_db_time(start))
        if end is not None:
            query += " AND starts_at <= ?"
            params.append(to_db_time(end))
        if bbox is not None:
            query += " AND lat IS NOT NULL AND lng IS NOT NULL"
            query += " AND lat BETWEEN ? AND ? AND lng BETWEEN ? AND ?"
            params.extend([bbox.min_lat, bbox.max_lat, bbox.min_lng, bbox.max_lng])

        query += " ORDER BY starts_at ASC"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [PersistedEvent.from_row(dict(row)) for row in rows]

    def get_events_missing_coordinates(self) -> list[PersistedEvent]:
        """Stored events with a venue but no coordinates."""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                WHERE lat IS NULL AND venue_name IS NOT NULL AND venue_name != ''
                ORDER BY starts_at ASC
                """
            ).fetchall()
        return [PersistedEvent.from_row(dict(row)) for row in rows]

    def update_event_coordinates(self, event_id: str, lat: float, lng: float) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE events SET lat = ?, lng = ?, updated_at = ? WHERE id = ?",
                (lat, lng, to_db_time(_utcnow()), event_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def set_event_status(self, event_id: str, status: EventStatus) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE events SET status = ?, updated_at = ? WHERE id = ?",
                (EventStatus(status).value, to_db_time(_utcnow()), event_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def archive_past_events(self, days: int = 7) -> int:
        """Archive ACTIVE events that ended (or, without an end, started) more than N days ago."""
        cutoff = to_db_time(_utcnow() - timedelta(days=days))
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE events SET status = ?, updated_at = ?
                WHERE status = ? AND COALESCE(ends_at, starts_at) < ?
                """,
                (
                    EventStatus.ARCHIVED.value,
                    to_db_time(_utcnow()),
                    EventStatus.ACTIVE.value,
                    cutoff,
                ),
            )
            conn.commit()
            return cursor.rowcount

    def count_events(self, status: Optional[EventStatus] = None) -> int:
        with self.get_connection() as conn:
            if status is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM events").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM events WHERE status = ?",
                    (EventStatus(status).value,),
                ).fetchone()
            return row["count"]

    def count_sources(self) -> int:
        with self.get_connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM sources").fetchone()
            return row["count"]

    def last_updated(self) -> Optional[datetime]:
        """Most recent updated_at across all events."""
        with self.get_connection() as conn:
            row = conn.execute("SELECT MAX(updated_at) AS last FROM events").fetchone()
        if not row or not row["last"]:
            return None
        return datetime.fromisoformat(row["last"])
