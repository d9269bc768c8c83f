"""
Dashboard query translation and source search.

Implements the datasource side of the search/query contract:
- QueryRequest parsing (targets, time range, maxDataPoints)
- One bounded range query per resolvable target, run concurrently and joined
- Reshaping rows into per-target timeseries results plus at most one merged
  table result

Query failures are all-or-nothing: a dashboard gets a complete response or
an error, never a partial target set.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from loguru import logger

from .config import SourceRegistry
from .errors import QueryRequestError
from .store import RangeFilter, SampleRow, TimeSeriesStore, get_store


class TargetType(str, Enum):
    """Output shape requested for a target."""
    TIMESERIES = "timeseries"
    TABLE = "table"

    @classmethod
    def _missing_(cls, value):
        # Stock SimpleJSON panels send the singular "timeserie"
        if value == "timeserie":
            return cls.TIMESERIES
        return None


TABLE_COLUMNS = [
    {"text": "Target", "type": "string"},
    {"text": "Value", "type": "number"},
    {"text": "Time", "type": "time"},
]


@dataclass(frozen=True)
class QueryTarget:
    target: str
    type: TargetType = TargetType.TIMESERIES


@dataclass(frozen=True)
class QueryRequest:
    targets: tuple[QueryTarget, ...]
    start: datetime
    end: datetime
    max_data_points: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "QueryRequest":
        """
        Parse a dashboard query body.

        Targets with an unrecognized type are dropped with a warning.

        Raises:
            QueryRequestError: on a malformed body, range, or maxDataPoints
        """
        if not isinstance(payload, dict):
            raise QueryRequestError("Query body must be a JSON object")

        raw_targets = payload.get("targets")
        if not isinstance(raw_targets, list):
            raise QueryRequestError("'targets' must be a list")

        targets = []
        for raw in raw_targets:
            if not isinstance(raw, dict) or not isinstance(raw.get("target"), str):
                raise QueryRequestError(f"Each target needs a string 'target': {raw!r}")
            raw_type = raw.get("type") or TargetType.TIMESERIES.value
            try:
                target_type = TargetType(raw_type)
            except ValueError:
                logger.warning(f"Ignoring target '{raw['target']}' with unknown type {raw_type!r}")
                continue
            targets.append(QueryTarget(target=raw["target"], type=target_type))

        time_range = payload.get("range")
        if not isinstance(time_range, dict) or "from" not in time_range or "to" not in time_range:
            raise QueryRequestError("'range' with 'from' and 'to' is required")

        start = parse_time(time_range["from"])
        end = parse_time(time_range["to"])
        if start > end:
            raise QueryRequestError(f"Range start {start.isoformat()} is after end {end.isoformat()}")

        return cls(
            targets=tuple(targets),
            start=start,
            end=end,
            max_data_points=_parse_max_data_points(payload.get("maxDataPoints")),
        )


def _from_epoch_ms(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        raise QueryRequestError(f"Time value out of range: {value!r}") from e


def parse_time(value: Any) -> datetime:
    """
    Parse a range bound: ISO-8601 string (trailing Z allowed) or epoch millis.

    Naive timestamps are treated as UTC.
    """
    if isinstance(value, bool):
        raise QueryRequestError(f"Invalid time value: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return _from_epoch_ms(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise QueryRequestError(f"Invalid time value: {value!r}") from e
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    raise QueryRequestError(f"Invalid time value: {value!r}")


def _parse_max_data_points(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise QueryRequestError(f"maxDataPoints must be an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise QueryRequestError(f"maxDataPoints must be an integer, got {value!r}")
    if value <= 0:
        raise QueryRequestError(f"maxDataPoints must be positive, got {value!r}")
    return int(value)


@dataclass
class TimeseriesResult:
    target: str
    datapoints: list[list] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"target": self.target, "datapoints": self.datapoints}


@dataclass
class TableResult:
    rows: list[list] = field(default_factory=list)
    columns: list[dict] = field(default_factory=lambda: [dict(c) for c in TABLE_COLUMNS])

    def to_dict(self) -> dict:
        return {"type": "table", "columns": self.columns, "rows": self.rows}


QueryResult = Union[TimeseriesResult, TableResult]


class QueryTranslator:
    """Turns a QueryRequest into store range queries and reshapes the rows."""

    def __init__(self, registry: SourceRegistry, store: Optional[TimeSeriesStore] = None):
        self.registry = registry
        self.store = store or get_store()

    def plan(self, request: QueryRequest) -> list[tuple[QueryTarget, RangeFilter]]:
        """Build one range filter per target that names an active source."""
        planned = []
        for target in request.targets:
            if self.registry.resolve(target.target) is None:
                logger.debug(f"Dropping unknown or inactive target '{target.target}'")
                continue
            planned.append(
                (
                    target,
                    RangeFilter(
                        measurement=target.target,
                        start=request.start,
                        end=request.end,
                        limit=request.max_data_points,
                    ),
                )
            )
        return planned

    def execute(self, request: QueryRequest) -> list[QueryResult]:
        """
        Run every planned range query and reshape the results.

        Returns:
            TimeseriesResults in request order, then at most one TableResult

        Raises:
            StoreQueryError: if any range query fails
        """
        planned = self.plan(request)
        if not planned:
            return []

        with ThreadPoolExecutor(max_workers=len(planned), thread_name_prefix="query") as pool:
            futures = [pool.submit(self.store.query, range_filter) for _, range_filter in planned]
            rows_per_target: list[list[SampleRow]] = [f.result() for f in futures]

        return reshape([t for t, _ in planned], rows_per_target)

    def query(self, payload: Any) -> list[dict]:
        """Parse a raw request body, execute it, and return JSON-ready results."""
        request = QueryRequest.from_payload(payload)
        return [result.to_dict() for result in self.execute(request)]


def reshape(targets: list[QueryTarget], rows_per_target: list[list[SampleRow]]) -> list[QueryResult]:
    """
    Shape raw rows into the dashboard response.

    Args:
        targets: Resolved targets, in request order
        rows_per_target: Store rows for each target, same order

    Returns:
        One TimeseriesResult per timeseries target, followed by a single
        TableResult merging all table rows (omitted when there are none)
    """
    series: list[QueryResult] = []
    table = TableResult()

    for target, rows in zip(targets, rows_per_target):
        if target.type == TargetType.TABLE:
            table.rows.extend([target.target, row.value, row.time_ms] for row in rows)
        else:
            series.append(
                TimeseriesResult(
                    target=target.target,
                    datapoints=[[row.value, row.time_ms] for row in rows],
                )
            )

    if table.rows:
        series.append(table)
    return series


class SearchProvider:
    """Lists the metric names a dashboard can query."""

    def __init__(self, registry: SourceRegistry):
        self.registry = registry

    def search(self) -> list[str]:
        """Names of active sources, in registry order."""
        return [source.name for source in self.registry.active_sources()]
