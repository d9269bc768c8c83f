"""
Outbound fetcher for the metric node.

Performs one HTTP read per call for a source's fetch config and turns the
response into a single numeric value. No retries: a failure is reported to
the caller as a FetchResult and the next scheduled tick tries again.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import requests
from loguru import logger

from .config import REQUEST_NAME_HEADER, FetchConfig
from .errors import FetchError, MalformedResponse


class FetchStatus(str, Enum):
    """Result status from a fetch operation."""
    SUCCESS = "success"        # Numeric value extracted
    ERROR = "error"            # Network error or non-success HTTP status
    MALFORMED = "malformed"    # Response had no usable numeric value


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    status: FetchStatus
    source_name: str
    value: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.SUCCESS


def _coerce_number(raw: Any, source_name: str) -> float:
    # bool is an int subclass; a true/false payload is not a reading
    if isinstance(raw, bool):
        raise MalformedResponse(source_name, f"Boolean payload is not numeric: {raw!r}")
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError as e:
            raise MalformedResponse(source_name, f"Non-numeric payload: {raw[:80]!r}") from e
    else:
        raise MalformedResponse(source_name, f"Non-numeric payload of type {type(raw).__name__}")

    if not math.isfinite(value):
        raise MalformedResponse(source_name, f"Non-finite value: {value}")
    return value


def extract_value(payload: Any, source_name: str, value_path: Optional[str] = None) -> float:
    """
    Pull the numeric reading out of a decoded response payload.

    - A bare number (or numeric string) is the reading itself.
    - For objects/arrays, `value_path` is a dotted path ("data.items.0.temp");
      without one the top-level "value" key is used.

    Raises:
        MalformedResponse: if the path is missing or the value is not numeric
    """
    if not isinstance(payload, (dict, list)):
        return _coerce_number(payload, source_name)

    path = value_path or "value"
    current = payload
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.lstrip("-").isdigit() and -len(current) <= int(part) < len(current):
            current = current[int(part)]
        else:
            raise MalformedResponse(source_name, f"Value path '{path}' not found in response")

    return _coerce_number(current, source_name)


def _decode_body(response: requests.Response) -> Any:
    """JSON body if it parses, otherwise the raw text."""
    try:
        return response.json()
    except ValueError:
        return response.text


class Fetcher:
    """
    Performs single outbound reads for sources.

    One requests.Session is shared by all fetch threads for connection reuse.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def read(self, source_name: str, config: FetchConfig) -> float:
        """
        Perform the request and return the numeric value.

        Raises:
            FetchError: on network error or non-success status
            MalformedResponse: on a missing or non-numeric value
        """
        headers = {**config.headers, REQUEST_NAME_HEADER: source_name}
        logger.debug(f"HTTP {config.method} begin: {config.url} for '{source_name}'")

        try:
            response = self.session.request(
                config.method,
                config.url,
                headers=headers,
                params=config.params or None,
                json=config.json,
                timeout=config.timeout,
            )
        except requests.RequestException as e:
            raise FetchError(source_name, f"Request to {config.url} failed: {e}") from e

        logger.debug(f"HTTP {config.method} status: {response.status_code} for '{source_name}'")
        if not response.ok:
            raise FetchError(
                source_name,
                f"{config.url} returned HTTP {response.status_code}",
            )

        return extract_value(_decode_body(response), source_name, config.value_path)

    def fetch(self, source_name: str, config: FetchConfig) -> FetchResult:
        """
        Fetch one reading, never raising.

        Returns:
            FetchResult with status and value or error
        """
        try:
            value = self.read(source_name, config)
        except MalformedResponse as e:
            logger.warning(f"Malformed response for '{source_name}': {e.message}")
            return FetchResult(status=FetchStatus.MALFORMED, source_name=source_name, error=e.message)
        except FetchError as e:
            logger.warning(f"Fetch failed for '{source_name}': {e.message}")
            return FetchResult(status=FetchStatus.ERROR, source_name=source_name, error=e.message)

        return FetchResult(status=FetchStatus.SUCCESS, source_name=source_name, value=value)

    def close(self) -> None:
        self.session.close()
