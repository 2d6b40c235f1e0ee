"""
Pipeline Exceptions - Custom error hierarchy.

Per-item and per-window errors are caught by the collector and processor and
recorded in the run's error list. Only ConfigurationError aborts a run.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(PipelineError):
    """A required credential or setting is missing."""


class ProviderThrottled(PipelineError):
    """The provider answered with a throttling status."""

    def __init__(
        self,
        message: str,
        status_code: int = 429,
        retry_after_seconds: Optional[float] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "retry_after_seconds": self.retry_after_seconds,
        })
        return data


class ProviderRequestError(PipelineError):
    """A non-throttling request failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class EnrichmentAPIError(ProviderRequestError):
    """The enrichment API returned a non-2xx, non-throttling status."""


class HostResourceError(ProviderRequestError):
    """The HTTP client could not complete the request (connection or timeout).

    The processor counts these separately and pauses once too many pile up.
    """


class EnrichmentFormatError(PipelineError):
    """Model output could not be parsed into a sentiment verdict."""


class RetriesExhaustedError(PipelineError):
    """The enrichment API kept throttling until the retry budget ran out."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.attempts = attempts
