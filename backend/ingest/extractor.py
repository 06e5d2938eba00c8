"""
Event Extraction Module

Stage 4 of the ingestion pipeline: turn segmented posts into structured events
using an LLM.

Strategy:
1. Segment the page into posts (see segmenter.py)
2. Send each post to the LLM on its own, throttled, asking for {"event": ...}
3. If segmentation finds nothing, send the cleaned page once, asking for
   {"events": [...]}
4. Validate every payload with pydantic and drop past events and unknown
   categories
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from openai import OpenAI
from pydantic import ValidationError

from .config import CITY_NAME, CITY_TIMEZONE, ExtractorConfig
from .errors import ConfigurationError, OracleParseError
from .logging_utils import get_logger, is_debug, truncate_for_log
from .models import CATEGORY_SLUGS, EventPost, ExtractedEvent, FetchedContent
from .segmenter import PostSegmenter, clean_page_text
from .throttle import Throttle


SYSTEM_PROMPT = """You are an expert at extracting public event information from web pages.

Today is {today} ({timezone}). The current year is {year}.

Output valid JSON only, following this schema for each event:
{{
  "title": "string (required)",
  "description": "string or null",
  "starts_at": "ISO 8601 date-time (required)",
  "ends_at": "ISO 8601 date-time or null",
  "venue_name": "string or null",
  "address": "string or null",
  "price_min": "number or null",
  "price_max": "number or null",
  "currency": "string or null (default USD)",
  "is_free": "boolean",
  "ticket_url": "string or null",
  "image_url": "string or null",
  "categories": ["array of category slugs"]
}}

IMPORTANT RULES:
1. Only extract events happening in {city} or the Bay Area
2. Only extract future events (starting on or after {today})
3. Express all times in America/Los_Angeles
4. If a date has no year, use the nearest future occurrence ({year} or {next_year})
5. If you can't determine a field, use null
6. Don't hallucinate - only extract what is clearly stated
7. Map categories to these slugs only: {categories}"""

POST_INSTRUCTIONS = """
The input is ONE post from a listing page. Respond with {"event": {...}} if it
describes a single event, or {"event": null} if it does not."""

PAGE_INSTRUCTIONS = """
The input is a whole listing page. Respond with {"events": [...]}, or
{"events": []} if there are none."""

POST_USER_PROMPT = """SOURCE_URL: {source_url}

TITLE: {title}

DESCRIPTION: {description}

TEXT (truncated):
{text}"""

PAGE_USER_PROMPT = """SOURCE_URL: {source_url}

CONTENT (truncated):
{text}"""

# LLMs sometimes answer with the camelCase keys of the event schema
_KEY_ALIASES = {
    "startsAt": "starts_at",
    "endsAt": "ends_at",
    "venueName": "venue_name",
    "venue": "venue_name",
    "priceMin": "price_min",
    "priceMax": "price_max",
    "isFree": "is_free",
    "ticketUrl": "ticket_url",
    "imageUrl": "image_url",
}
# Coordinates come from the geocoder, never from the LLM
_IGNORED_KEYS = {"lat", "lng", "source_url", "sourceUrl"}


@dataclass
class Extracted:
    event: ExtractedEvent


@dataclass
class ParseFailure:
    raw: str
    error: str


@dataclass
class ValidationFailure:
    payload: Any
    error: str


@dataclass
class NoEvent:
    reason: str = ""


ExtractionResult = Union[Extracted, ParseFailure, ValidationFailure, NoEvent]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code block, if any."""
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]
    return text.strip()


def parse_oracle_json(raw: str) -> Any:
    """Decode an LLM answer, tolerating code fences."""
    cleaned = strip_code_fences(raw or "")
    if not cleaned:
        raise OracleParseError("empty response", raw=raw or "")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise OracleParseError(f"invalid JSON: {e}", raw=raw) from e


def normalize_event_payload(item: dict) -> dict:
    """Map alias keys to model field names and drop keys the LLM may not set."""
    fields = ExtractedEvent.model_fields
    payload: dict[str, Any] = {}
    for key, value in item.items():
        if key in _IGNORED_KEYS:
            continue
        name = _KEY_ALIASES.get(key, key)
        if name in fields and name not in payload:
            payload[name] = value
    return payload


class EventExtractor:
    """
    Extracts ExtractedEvent objects from fetched pages.

    Usage:
        extractor = EventExtractor(config)
        events = extractor.extract_events(content)
    """

    def __init__(
        self,
        config: Optional[ExtractorConfig] = None,
        openai_client: Optional[OpenAI] = None,
        throttle: Optional[Throttle] = None,
        segmenter: Optional[PostSegmenter] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            config: Model and limits. Defaults to ExtractorConfig().
            openai_client: Injected client. Built from config.api_key when omitted.
            throttle: Spacing between per-post LLM calls.
            segmenter: Post segmenter used by extract_events.
            now: Clock used for the date context and the future-only filter.
        """
        self.config = config or ExtractorConfig()
        self.logger = get_logger(__name__)
        if openai_client is None and self.config.api_key:
            openai_client = OpenAI(api_key=self.config.api_key)
        self.client = openai_client
        self.throttle = throttle or Throttle(self.config.delay_seconds)
        self.segmenter = segmenter or PostSegmenter()
        self._now = now or (lambda: datetime.now(CITY_TIMEZONE))
        self._last_tokens_used = 0
        self.total_tokens_used = 0

    @property
    def last_tokens_used(self) -> int:
        """Returns the token count from the last LLM call."""
        return self._last_tokens_used

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def build_system_prompt(self) -> str:
        today = self._now()
        return SYSTEM_PROMPT.format(
            today=today.strftime("%A, %B %d, %Y"),
            timezone="America/Los_Angeles",
            year=today.year,
            next_year=today.year + 1,
            city=CITY_NAME,
            categories=", ".join(sorted(CATEGORY_SLUGS)),
        )

    def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        if self.client is None:
            raise ConfigurationError("OPENAI_API_KEY not configured")

        response = self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=max_tokens,
            temperature=self.config.temperature,
            response_format={"type": "json_object"},
        )

        self._last_tokens_used = response.usage.total_tokens if response.usage else 0
        self.total_tokens_used += self._last_tokens_used
        if is_debug():
            self.logger.debug("LLM tokens used: %s", self._last_tokens_used)

        return (response.choices[0].message.content or "").strip()

    def _finalize(self, event: ExtractedEvent) -> Optional[ExtractedEvent]:
        """Drop unknown categories; drop the event entirely if it already started."""
        known = [slug for slug in event.categories if slug in CATEGORY_SLUGS]
        if len(known) != len(event.categories):
            if is_debug():
                self.logger.debug(
                    "Dropping unknown categories %s for '%s'",
                    [slug for slug in event.categories if slug not in CATEGORY_SLUGS],
                    event.title,
                )
            event = event.model_copy(update={"categories": known})

        if self.config.enforce_future_only and event.starts_at < self._now():
            self.logger.info("Dropping past event '%s' (%s)", event.title, event.starts_at)
            return None
        return event

    def _build_event(self, item: Any, source_url: str) -> ExtractionResult:
        if not isinstance(item, dict):
            return ValidationFailure(payload=item, error="event payload is not an object")
        payload = normalize_event_payload(item)
        payload["source_url"] = source_url
        try:
            event = ExtractedEvent(**payload)
        except (ValidationError, TypeError) as e:
            return ValidationFailure(payload=item, error=str(e))

        finalized = self._finalize(event)
        if finalized is None:
            return NoEvent(reason="event is in the past")
        return Extracted(event=finalized)

    def extract_from_post(self, post: EventPost, source_url: str) -> ExtractionResult:
        """
        Ask the LLM for the single event described by one post.

        Raises:
            ConfigurationError: no OpenAI client is available.
        """
        user_prompt = POST_USER_PROMPT.format(
            source_url=source_url,
            title=post.title,
            description=post.description or "",
            text=post.full_text[: self.config.post_text_chars],
        )
        try:
            raw = self._complete(
                self.build_system_prompt() + POST_INSTRUCTIONS,
                user_prompt,
                self.config.post_max_tokens,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            self.logger.warning("LLM error for post '%s' (%s): %s", post.title, source_url, e)
            return ParseFailure(raw="", error=str(e))

        try:
            data = parse_oracle_json(raw)
        except OracleParseError as e:
            self.logger.warning(
                "Failed to parse LLM response for '%s': %s | raw: %s",
                post.title, e, truncate_for_log(e.raw),
            )
            return ParseFailure(raw=raw, error=str(e))

        if not isinstance(data, dict):
            return ValidationFailure(payload=data, error="response is not an object")
        item = data.get("event") if "event" in data else (data if "title" in data else None)
        if not item:
            return NoEvent(reason="no event in post")

        result = self._build_event(item, source_url)
        if isinstance(result, ValidationFailure):
            self.logger.warning("Invalid event for post '%s': %s", post.title, result.error)
        return result

    def extract_from_page(self, content: FetchedContent) -> list[ExtractedEvent]:
        """Ask the LLM for every event on a whole page; items are validated one by one."""
        if not self.is_configured:
            self.logger.warning("OPENAI_API_KEY not configured, skipping %s", content.url)
            return []

        text = clean_page_text(content.html, self.config.page_text_chars)
        user_prompt = PAGE_USER_PROMPT.format(source_url=content.url, text=text)
        try:
            raw = self._complete(
                self.build_system_prompt() + PAGE_INSTRUCTIONS,
                user_prompt,
                self.config.page_max_tokens,
            )
            data = parse_oracle_json(raw)
        except OracleParseError as e:
            self.logger.warning(
                "Failed to parse LLM response for %s: %s | raw: %s",
                content.url, e, truncate_for_log(e.raw),
            )
            return []
        except Exception as e:
            self.logger.warning("LLM error for %s: %s", content.url, e)
            return []

        if isinstance(data, dict):
            items = data.get("events") or []
        elif isinstance(data, list):
            items = data
        else:
            items = []

        events: list[ExtractedEvent] = []
        for item in items:
            result = self._build_event(item, content.url)
            if isinstance(result, Extracted):
                events.append(result.event)
            elif isinstance(result, ValidationFailure):
                self.logger.warning("Invalid event on %s: %s", content.url, result.error)
        self.logger.info("Extracted %s events from page %s", len(events), content.url)
        return events

    def extract_events(
        self, content: FetchedContent, max_posts: Optional[int] = None
    ) -> list[ExtractedEvent]:
        """Segment the page and extract one event per post, falling back to the whole page."""
        if not self.is_configured:
            self.logger.warning("OPENAI_API_KEY not configured, skipping %s", content.url)
            return []

        limit = max_posts if max_posts is not None else self.config.max_posts_per_page
        posts = self.segmenter.extract_posts(content.html)
        if not posts:
            self.logger.info("No posts segmented on %s, using page-level extraction", content.url)
            return self.extract_from_page(content)

        events: list[ExtractedEvent] = []
        failures = 0
        for post in posts[:limit]:
            self.throttle.wait()
            result = self.extract_from_post(post, content.url)
            if isinstance(result, Extracted):
                events.append(result.event)
            elif isinstance(result, (ParseFailure, ValidationFailure)):
                failures += 1

        self.logger.info(
            "Extracted %s events from %s posts on %s (%s failed)",
            len(events), min(len(posts), limit), content.url, failures,
        )
        return events
