from pathlib import Path

import pytest

from ingest.config import SF_BOUNDS, BoundingBox, IngestionConfig, require_api_key
from ingest.errors import ConfigurationError
from ingest.throttle import Throttle

ENV_NAMES = [
    "SERPAPI_KEY",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "GOOGLE_MAPS_API_KEY",
    "DATABASE_PATH",
    "FETCH_TIMEOUT_SECONDS",
    "LLM_DELAY_SECONDS",
    "DEDUP_FUZZY_THRESHOLD",
    "INGEST_INTRA_BATCH_DEDUP",
    "INGEST_ENFORCE_FUTURE_ONLY",
    "INGEST_DRY_RUN_SAMPLE_SIZE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment():
    config = IngestionConfig.from_env()

    assert config.search.api_key is None
    assert config.extractor.api_key is None
    assert config.extractor.model == "gpt-4o-mini"
    assert config.geocoder.api_key is None
    assert config.dedup.fuzzy_threshold == 0.8
    assert config.dedup.date_tolerance_hours == 24.0
    assert config.dedup.intra_batch is True
    assert config.database_path is None
    assert config.dry_run_sample_size == 3


def test_values_are_read_from_environment(monkeypatch):
    monkeypatch.setenv("SERPAPI_KEY", " serp-key ")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("DATABASE_PATH", "/tmp/events.db")
    monkeypatch.setenv("LLM_DELAY_SECONDS", "0")
    monkeypatch.setenv("INGEST_INTRA_BATCH_DEDUP", "no")
    monkeypatch.setenv("INGEST_DRY_RUN_SAMPLE_SIZE", "5")

    config = IngestionConfig.from_env()

    assert config.search.api_key == "serp-key"
    assert config.extractor.api_key == "sk-test"
    assert config.extractor.model == "gpt-4o"
    assert config.extractor.delay_seconds == 0.0
    assert config.database_path == Path("/tmp/events.db")
    assert config.dedup.intra_batch is False
    assert config.dry_run_sample_size == 5


@pytest.mark.parametrize("raw", ["abc", "-1", "0"])
def test_invalid_numbers_fall_back_to_defaults(monkeypatch, raw):
    monkeypatch.setenv("FETCH_TIMEOUT_SECONDS", raw)
    monkeypatch.setenv("DEDUP_FUZZY_THRESHOLD", raw)
    monkeypatch.setenv("INGEST_DRY_RUN_SAMPLE_SIZE", raw)

    config = IngestionConfig.from_env()

    assert config.fetch.timeout_seconds == 10.0
    assert config.dedup.fuzzy_threshold == 0.8
    assert config.dry_run_sample_size == 3


def test_blank_key_is_treated_as_missing(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "   ")

    assert IngestionConfig.from_env().extractor.api_key is None


def test_require_api_key():
    assert require_api_key("sk-test", "OPENAI_API_KEY") == "sk-test"
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        require_api_key(None, "OPENAI_API_KEY")


def test_bounding_box():
    assert SF_BOUNDS.contains(37.7749, -122.4194)
    assert not SF_BOUNDS.contains(37.8044, -122.2712)
    assert SF_BOUNDS.as_google_bounds() == "37.7,-122.55|37.85,-122.35"
    assert BoundingBox(0, 0, 1, 1).contains(1, 1)


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_throttle_spaces_calls():
    fake = FakeClock()
    throttle = Throttle(1.0, clock=fake.clock, sleep=fake.sleep)

    assert throttle.wait() == 0.0
    fake.now += 0.25
    assert throttle.wait() == pytest.approx(0.75)
    fake.now += 2.0
    assert throttle.wait() == 0.0
    assert fake.sleeps == [pytest.approx(0.75)]


def test_throttle_reset_and_zero_interval():
    fake = FakeClock()
    throttle = Throttle(1.0, clock=fake.clock, sleep=fake.sleep)
    throttle.wait()
    throttle.reset()
    assert throttle.wait() == 0.0

    unlimited = Throttle(0, clock=fake.clock, sleep=fake.sleep)
    unlimited.wait()
    assert unlimited.wait() == 0.0
    assert fake.sleeps == []
