"""Error taxonomy for the ingestion pipeline."""

from __future__ import annotations


class IngestionError(Exception):
    """Base ingestion error."""


class FetchError(IngestionError):
    """A page could not be retrieved."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(f"Failed to fetch {url}: {message}")
        self.url = url
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Timeout, 5xx or network failure. Skip the item, a later run may succeed."""


class PermanentInputError(IngestionError):
    """Malformed URL or missing required field. Never retried."""


class OracleParseError(IngestionError):
    """An external oracle (LLM, geocoder) returned non-conforming JSON."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class ConfigurationError(IngestionError):
    """A required API credential or setting is missing."""


class UnsupportedCityError(IngestionError):
    """Ingestion was requested for a city other than the supported one."""

    def __init__(self, city: str, supported: str):
        super().__init__(f"Unsupported city '{city}'. Only '{supported}' is supported.")
        self.city = city
        self.supported = supported


class PersistenceConflict(IngestionError):
    """A single upsert failed. The rest of the batch continues."""
