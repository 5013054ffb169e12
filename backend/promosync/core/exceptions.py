"""Error taxonomy shared by the source client, the sink adapters and the orchestrator.

Everything raised on purpose inherits from ``PromoSyncError`` so callers can
catch one type at a location boundary. Transient failures are not modelled
here; they are classified from the underlying httpx / SQLAlchemy / socket
exception by ``promosync.core.retry.is_transient``.
"""

from __future__ import annotations


class PromoSyncError(Exception):
    """Base class for all promosync errors."""


class ConfigError(PromoSyncError):
    """Invalid or missing configuration, including a sink schema mismatch."""


class LocationEnumerationError(PromoSyncError):
    """The list of locations could not be loaded; the whole run aborts."""


class MissingCredentialsError(PromoSyncError):
    """A location lacks the API key or provider store id needed to fetch it."""

    def __init__(self, location_name: str, missing: list[str]):
        super().__init__(f"{location_name}: missing {', '.join(missing)}")
        self.location_name = location_name
        self.missing = missing


class SourceAPIError(PromoSyncError):
    """Non-retryable response from the upstream POS API."""

    def __init__(self, status_code: int, url: str, detail: str = ""):
        super().__init__(f"{status_code} from {url}: {detail}".rstrip(": "))
        self.status_code = status_code
        self.url = url
        self.detail = detail


class SinkError(PromoSyncError):
    """Non-retryable failure reported by the sink."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientSinkError(SinkError):
    """Retryable sink failure (5xx, dropped connection) surfaced from a tagged result."""

