"""
Error taxonomy for the metric node.

Scheduler-path errors (fetch, write, delete) are logged per occurrence and
never stop the tick loop. Query-path errors abort the whole request.
"""

from __future__ import annotations


class MetricNodeError(Exception):
    """Base class for all metric node errors."""


class ConfigError(MetricNodeError):
    """Invalid, duplicate, or unreadable source configuration."""


class FetchError(MetricNodeError):
    """Outbound read failed: network error, non-success status, or bad payload."""

    def __init__(self, source_name: str, message: str):
        super().__init__(message)
        self.source_name = source_name
        self.message = message

    def __str__(self) -> str:
        return f"[{self.source_name}] {self.message}"


class MalformedResponse(FetchError):
    """Response payload is missing a value or the value is not numeric."""


class StoreError(MetricNodeError):
    """Base class for time-series store failures."""


class StoreWriteError(StoreError):
    """Sample could not be written."""


class StoreQueryError(StoreError):
    """Range query could not be executed."""


class StoreDeleteError(StoreError):
    """Retention delete could not be executed."""


class QueryRequestError(MetricNodeError):
    """Dashboard query request could not be parsed."""
