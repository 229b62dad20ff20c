"""Exception hierarchy for the exporter."""

from typing import Optional


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigError(ExporterError):
    """Configuration is missing or invalid."""


class AuthError(ExporterError):
    """No usable Google credentials or project could be discovered."""


class APIError(ExporterError):
    """The remote monitoring API answered with a non-success status."""

    def __init__(self, status: int, message: str, url: Optional[str] = None):
        self.status = status
        self.message = message
        self.url = url
        super().__init__(f"HTTP {status}: {message}")


class TransientAPIError(APIError):
    """Retryable status from the remote API."""


class CollectorInitError(ExporterError):
    """A monitoring collector rejected its configuration."""
