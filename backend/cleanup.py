#!/usr/bin/env python3
"""
Archive Old Events

Cron script to archive events that have already passed. Rows are kept with
status ARCHIVED so re-ingestion never resurrects them as new events.
Run via cron: 0 4 * * * /opt/sf-events/venv/bin/python /opt/sf-events/backend/cleanup.py
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from dotenv import load_dotenv

from database import EventStore
from ingest.models import EventStatus

# Load environment variables
load_dotenv()

# Days after which past events are archived
DAYS_TO_KEEP = 7


def cleanup_old_events(store: Optional[EventStore] = None, days: int = DAYS_TO_KEEP) -> int:
    """Archive events that ended more than ``days`` days ago. Returns the count archived."""
    print(f"\n{'='*60}")
    print(f"[cleanup] Starting at {datetime.now().isoformat()}")
    print(f"{'='*60}\n")

    store = store or EventStore()

    count_before = store.count_events(EventStatus.ACTIVE)
    print(f"[cleanup] Active events in database: {count_before}")

    archived = store.archive_past_events(days=days)
    print(f"[cleanup] Archived {archived} events older than {days} days")

    count_after = store.count_events(EventStatus.ACTIVE)
    print(f"[cleanup] Active events remaining: {count_after}")

    print(f"\n[cleanup] Complete at {datetime.now().isoformat()}")
    print(f"{'='*60}\n")
    return archived


if __name__ == "__main__":
    cleanup_old_events()
