"""
Fuzzy Deduplication

Stage 6 of the ingestion pipeline: decide whether a freshly extracted event is
the same real-world event as one already stored (or already accepted earlier
in the same run).

Two events are compared only when their start times are within the date
tolerance window; within the window the normalized Levenshtein similarity of
the titles decides.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional, Protocol, Sequence

from rapidfuzz.distance import Levenshtein

from .config import DedupConfig
from .logging_utils import get_logger, is_debug
from .models import DeduplicationResult, ExtractedEvent, PersistedEvent


class ActiveEventReader(Protocol):
    def find_active_events_between(self, start, end) -> Sequence[PersistedEvent]:
        ...


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance (insert, delete, substitute each cost 1)."""
    return Levenshtein.distance(a, b)


def calculate_similarity(a: str, b: str) -> float:
    """1 - edit distance / longer length, case-insensitive. Two empty strings are identical."""
    return Levenshtein.normalized_similarity(a.lower(), b.lower())


class Deduplicator:
    """Flags events that fuzzily match stored ACTIVE events (and, optionally, earlier batch events)."""

    def __init__(self, store: Optional[ActiveEventReader], config: Optional[DedupConfig] = None):
        self.store = store
        self.config = config or DedupConfig()
        self.logger = get_logger(__name__)
        self._batch: list[tuple[ExtractedEvent, Optional[str]]] = []

    @property
    def tolerance(self) -> timedelta:
        return timedelta(hours=self.config.date_tolerance_hours)

    def check_duplicate(self, event: ExtractedEvent) -> DeduplicationResult:
        if not event.title or event.starts_at is None:
            return DeduplicationResult(is_duplicate=False, confidence=0.0, reason="missing title or start")

        start = event.starts_at - self.tolerance
        end = event.starts_at + self.tolerance

        candidates: list[tuple[str, Optional[str], str]] = []
        if self.store is not None:
            for stored in self.store.find_active_events_between(start, end):
                if start <= stored.starts_at <= end:
                    candidates.append((stored.title, stored.id, "stored"))
        if self.config.intra_batch:
            for earlier, earlier_id in self._batch:
                if start <= earlier.starts_at <= end:
                    candidates.append((earlier.title, earlier_id, "batch"))

        if not candidates:
            return DeduplicationResult(is_duplicate=False, confidence=0.0, reason="no events in window")

        best_score = -1.0
        best_id: Optional[str] = None
        best_origin = ""
        best_title = ""
        for title, event_id, origin in candidates:
            score = calculate_similarity(event.title, title)
            if score > best_score:
                best_score = score
                best_id = event_id
                best_origin = origin
                best_title = title

        if best_score >= self.config.fuzzy_threshold:
            if is_debug():
                self.logger.debug(
                    "Duplicate: '%s' ~ '%s' (%.2f, %s)", event.title, best_title, best_score, best_origin
                )
            reason = (
                "similar to stored event"
                if best_origin == "stored"
                else "similar to event earlier in this run"
            )
            return DeduplicationResult(
                is_duplicate=True,
                confidence=best_score,
                existing_event_id=best_id,
                reason=reason,
            )

        return DeduplicationResult(is_duplicate=False, confidence=best_score, reason="below threshold")

    def remember(self, event: ExtractedEvent, event_id: Optional[str] = None) -> None:
        """Record an accepted event so later events in the same run are compared against it."""
        if self.config.intra_batch:
            self._batch.append((event, event_id))
