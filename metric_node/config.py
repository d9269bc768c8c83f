"""
Source configuration and registry for the metric node.

Implements:
- Source definitions (fetch descriptor, poll interval, retention policy)
- YAML loading with validation (unique names, non-negative intervals)
- Server/scheduler settings with environment overrides
- SourceRegistry: the immutable, ordered view every other component reads

Retention ages and check intervals are always expressed in seconds.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import yaml
from loguru import logger

from .errors import ConfigError


# Defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3030
DEFAULT_TICK_SECONDS = 1.0
DEFAULT_RETENTION_CHECK_SECONDS = 3600.0

REQUEST_NAME_HEADER = "X-Custom-Request-Name"


@dataclass(frozen=True)
class RetentionPolicy:
    """How long samples of a source are kept, and how often that is enforced."""
    active: bool = False
    age_seconds: float = 0.0
    check_interval_seconds: float = DEFAULT_RETENTION_CHECK_SECONDS


@dataclass(frozen=True)
class FetchConfig:
    """Outbound request descriptor for one source."""
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    json: Any = None
    value_path: Optional[str] = None
    timeout: Optional[float] = None  # None = no timeout


@dataclass(frozen=True)
class SourceDefinition:
    """A configured remote endpoint, mapped 1:1 to a measurement."""
    name: str
    fetch: FetchConfig
    active: bool = True
    poll_interval_seconds: float = 0.0
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)

    @property
    def is_schedulable(self) -> bool:
        return self.active and self.poll_interval_seconds > 0

    @property
    def is_prunable(self) -> bool:
        return (
            self.is_schedulable
            and self.retention.active
            and self.retention.age_seconds > 0
        )


@dataclass(frozen=True)
class NodeSettings:
    """Process-level settings."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    tick_seconds: float = DEFAULT_TICK_SECONDS
    db_path: Optional[Path] = None
    config_path: Optional[Path] = None


class SourceRegistry:
    """
    Ordered, immutable collection of source definitions.

    Registry order is the config file order and is preserved by every
    listing method.
    """

    def __init__(self, sources: Sequence[SourceDefinition] = ()):
        seen: set[str] = set()
        for source in sources:
            if source.name in seen:
                raise ConfigError(f"Duplicate source name: {source.name}")
            seen.add(source.name)

        self._sources: tuple[SourceDefinition, ...] = tuple(sources)
        self._by_name = {s.name: s for s in self._sources}

    def __iter__(self) -> Iterator[SourceDefinition]:
        return iter(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Optional[SourceDefinition]:
        """Look up a source by name regardless of its active flag."""
        return self._by_name.get(name)

    def resolve(self, name: str) -> Optional[SourceDefinition]:
        """Look up an active source by name; inactive or unknown gives None."""
        source = self._by_name.get(name)
        if source is None or not source.active:
            return None
        return source

    def active_sources(self) -> list[SourceDefinition]:
        return [s for s in self._sources if s.active]

    def schedulable(self) -> list[SourceDefinition]:
        return [s for s in self._sources if s.is_schedulable]

    def prunable(self) -> list[SourceDefinition]:
        return [s for s in self._sources if s.is_prunable]


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _pick(raw: dict, *keys: str, default: Any = None) -> Any:
    """Return the first present key (aliases and camelCase spellings)."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _as_bool(value: Any, what: str, source_name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"Source '{source_name}': {what} must be true or false, got {value!r}")
    return value


def _as_seconds(value: Any, what: str, source_name: str) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Source '{source_name}': {what} must be a number, got {value!r}") from e
    if seconds < 0:
        raise ConfigError(f"Source '{source_name}': {what} must be >= 0, got {seconds}")
    return seconds


def _parse_fetch(raw: Any, source_name: str) -> FetchConfig:
    if not isinstance(raw, dict) or not raw.get("url"):
        raise ConfigError(f"Source '{source_name}': fetch config with a 'url' is required")

    headers = raw.get("headers") or {}
    params = raw.get("params") or {}
    if not isinstance(headers, dict) or not isinstance(params, dict):
        raise ConfigError(f"Source '{source_name}': fetch headers/params must be mappings")

    timeout = raw.get("timeout")
    if timeout is not None:
        timeout = _as_seconds(timeout, "fetch timeout", source_name) or None

    return FetchConfig(
        url=str(raw["url"]),
        method=str(raw.get("method") or "GET").upper(),
        headers={str(k): str(v) for k, v in headers.items()},
        params=dict(params),
        json=_pick(raw, "json", "data", "body"),
        value_path=_pick(raw, "value_path", "valuePath"),
        timeout=timeout,
    )


def _parse_retention(raw: Any, source_name: str) -> RetentionPolicy:
    if raw is None:
        return RetentionPolicy()
    if not isinstance(raw, dict):
        raise ConfigError(f"Source '{source_name}': retention must be a mapping")

    return RetentionPolicy(
        active=_as_bool(raw.get("active", False), "retention active", source_name),
        age_seconds=_as_seconds(
            _pick(raw, "age_seconds", "ageSeconds", default=0), "retention age", source_name
        ),
        check_interval_seconds=_as_seconds(
            _pick(
                raw,
                "check_interval_seconds",
                "checkIntervalSeconds",
                default=DEFAULT_RETENTION_CHECK_SECONDS,
            ),
            "retention check interval",
            source_name,
        ),
    )


def parse_source(raw: Any) -> SourceDefinition:
    """
    Parse one source entry from the config file.

    Accepts `interval` as an alias of `poll_interval_seconds` and `config`
    as an alias of `fetch`.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"Source entry must be a mapping, got {type(raw).__name__}")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"Source entry is missing a name: {raw!r}")
    name = name.strip()

    interval = _pick(raw, "poll_interval_seconds", "pollIntervalSeconds", "interval")
    if interval is None:
        logger.warning(f"Source '{name}' has no poll interval, it will not be scheduled")
        interval = 0

    return SourceDefinition(
        name=name,
        fetch=_parse_fetch(_pick(raw, "fetch", "fetchConfig", "config"), name),
        active=_as_bool(raw.get("active", True), "active", name),
        poll_interval_seconds=_as_seconds(interval, "poll interval", name),
        retention=_parse_retention(raw.get("retention"), name),
    )


def build_registry(entries: Sequence[Any]) -> SourceRegistry:
    """Build a registry from raw source entries, preserving order."""
    return SourceRegistry([parse_source(entry) for entry in entries])


# ---------------------------------------------------------------------------
# File + environment loading
# ---------------------------------------------------------------------------

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={os.getenv(name)!r}")
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={os.getenv(name)!r}")
        return default


def get_config_path() -> Path:
    """Config file path: METRIC_NODE_CONFIG or configs/sources.yml."""
    return Path(os.environ.get("METRIC_NODE_CONFIG", "configs/sources.yml"))


def get_db_path() -> Path:
    """Store path: METRIC_NODE_DB or <DATA_ROOT>/data_layer/metrics.sqlite."""
    explicit = os.environ.get("METRIC_NODE_DB")
    if explicit:
        return Path(explicit)
    data_root = os.environ.get("DATA_ROOT", ".")
    return Path(data_root) / "data_layer" / "metrics.sqlite"


def _read_yaml(config_path: Path) -> dict:
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {config_path} is not valid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return raw


def load_settings(raw: dict, config_path: Optional[Path] = None) -> NodeSettings:
    """Build settings from the config mapping; environment variables win."""
    server = raw.get("server") or {}
    scheduler = raw.get("scheduler") or {}

    host = os.environ.get("METRIC_NODE_HOST", server.get("host", DEFAULT_HOST))
    port = _env_int("METRIC_NODE_PORT", int(server.get("port", DEFAULT_PORT)))
    tick = _env_float(
        "METRIC_NODE_TICK_SECONDS",
        float(scheduler.get("tick_seconds", DEFAULT_TICK_SECONDS)),
    )
    if tick <= 0:
        raise ConfigError(f"Scheduler tick must be > 0, got {tick}")

    return NodeSettings(
        host=str(host),
        port=port,
        tick_seconds=tick,
        db_path=get_db_path(),
        config_path=config_path,
    )


def load_config(config_path: Optional[Path] = None) -> tuple[NodeSettings, SourceRegistry]:
    """
    Load settings and the source registry from a YAML file.

    Args:
        config_path: Path to config (default: get_config_path())

    Returns:
        (settings, registry)

    Raises:
        ConfigError: on unreadable files or invalid source entries
    """
    config_path = Path(config_path) if config_path else get_config_path()
    raw = _read_yaml(config_path)

    entries = raw.get("sources") or []
    if not isinstance(entries, list):
        raise ConfigError("'sources' must be a list")

    registry = build_registry(entries)
    settings = load_settings(raw, config_path)

    logger.info(
        f"Loaded {len(registry)} sources from {config_path} "
        f"({len(registry.schedulable())} scheduled, {len(registry.prunable())} with retention)"
    )
    return settings, registry
