#!/usr/bin/env python3
"""
Ingest San Francisco Events

Cron script running one full (non-dry) ingestion.
Run via cron: 0 3 * * * /opt/sf-events/venv/bin/python /opt/sf-events/backend/ingest_all.py
"""

import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from dotenv import load_dotenv

from database import EventStore
from ingest.config import SUPPORTED_CITY, IngestionConfig, require_api_key
from ingest.errors import ConfigurationError
from ingest.pipeline import run_ingestion

# Load environment variables
load_dotenv()


def ingest_all() -> int:
    """Run ingestion for the supported city. Returns a process exit code."""
    print(f"\n{'='*60}")
    print(f"[ingest_all] Starting at {datetime.now().isoformat()}")
    print(f"{'='*60}\n")

    config = IngestionConfig.from_env()
    try:
        require_api_key(config.search.api_key, "SERPAPI_KEY")
        require_api_key(config.extractor.api_key, "OPENAI_API_KEY")
    except ConfigurationError as e:
        print(f"[ERROR] {e}")
        return 1

    store = EventStore(config.database_path)
    print(f"[ingest_all] {store.count_events()} events in database\n")

    result = run_ingestion(SUPPORTED_CITY, dry_run=False, config=config, store=store)

    print(f"\n{'='*60}")
    print("[ingest_all] Complete!")
    print(f"    {result.summary}")
    print(f"    Duration: {result.duration_seconds}s")
    print(f"    Finished at {datetime.now().isoformat()}")
    print(f"{'='*60}\n")
    return 0


if __name__ == "__main__":
    sys.exit(ingest_all())
