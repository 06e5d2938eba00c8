from __future__ import annotations

import json
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from database import EventStore  # noqa: E402
from ingest.config import CITY_TIMEZONE  # noqa: E402
from ingest.throttle import Throttle  # noqa: E402

FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=CITY_TIMEZONE)


class FakeCompletions:
    """Stands in for client.chat.completions; replies are consumed in order."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else json.dumps({"event": None})
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=reply))],
            usage=SimpleNamespace(total_tokens=42),
        )


class FakeOpenAI:
    def __init__(self, replies=()):
        self.completions = FakeCompletions(replies)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def store(tmp_path):
    return EventStore(tmp_path / "events.db")


@pytest.fixture
def no_wait():
    return Throttle(0)
