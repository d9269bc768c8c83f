"""
Fetch/prune scheduler for the metric node.

Implements:
- One ScheduleState per schedulable source, created once at construction
- Coarse tick (default 1s) that scans every source for due fetches and prunes
- Elapsed-time due-checks: never more often than the interval, never later
  than interval + one tick; slow ticks drift instead of bursting to catch up
- Fire-and-forget dispatch of each due operation as its own thread, with no
  cap on how many run at once

The due-check and the timestamp stamp happen together under the tick lock,
before dispatch, so a source is never fetched twice in the same window even
if its previous fetch is still in flight.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from .config import SourceDefinition, SourceRegistry
from .fetchers import Fetcher
from .ingest import Ingestor, Pruner


Dispatch = Callable[[str, Callable[[], None]], None]


@dataclass
class ScheduleState:
    """Timing state for one source. Mutated only by Scheduler.tick()."""
    last_fetch_at: Optional[float] = None
    last_prune_at: Optional[float] = None
    fetches_dispatched: int = 0
    prunes_dispatched: int = 0


@dataclass
class SourceHealth:
    """Outcome counters written by completed fetch threads."""
    fetch_failures: int = 0
    samples_written: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[float] = None


@dataclass
class TickReport:
    """What a single tick dispatched."""
    fetched: list[str] = field(default_factory=list)
    pruned: list[tuple[str, datetime]] = field(default_factory=list)


def is_due(last_at: Optional[float], interval: float, now: float) -> bool:
    """True if the action never ran or at least `interval` seconds elapsed."""
    if last_at is None:
        return True
    return now >= last_at + interval


def spawn_thread(name: str, work: Callable[[], None]) -> None:
    """Default dispatcher: run work on its own daemon thread."""
    threading.Thread(target=work, name=name, daemon=True).start()


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class Scheduler:
    """
    Drives periodic fetch and prune for every schedulable source.

    Each source is an independent state machine; the only shared thing is
    the tick that scans them.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        fetcher: Optional[Fetcher] = None,
        ingestor: Optional[Ingestor] = None,
        pruner: Optional[Pruner] = None,
        tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
        dispatch: Dispatch = spawn_thread,
    ):
        """
        Initialize the scheduler.

        Args:
            registry: Source registry
            fetcher: Outbound fetcher (default: Fetcher())
            ingestor: Sample writer (default: Ingestor())
            pruner: Retention pruner (default: Pruner())
            tick_seconds: Seconds between ticks in the background loop
            clock: Returns current epoch seconds
            dispatch: Called as dispatch(name, work) for each due operation
        """
        self.registry = registry
        self.fetcher = fetcher or Fetcher()
        self.ingestor = ingestor or Ingestor()
        self.pruner = pruner or Pruner()
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._dispatch = dispatch

        self._sources: list[SourceDefinition] = registry.schedulable()
        self._states: dict[str, ScheduleState] = {s.name: ScheduleState() for s in self._sources}
        self._health: dict[str, SourceHealth] = {s.name: SourceHealth() for s in self._sources}
        self._tick_lock = threading.Lock()
        self._health_lock = threading.Lock()

        # Loop control
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._last_tick: Optional[float] = None

        skipped = [s.name for s in registry if not s.is_schedulable]
        if skipped:
            logger.info(f"Not scheduling inactive or interval-less sources: {', '.join(skipped)}")

    def state_for(self, name: str) -> Optional[ScheduleState]:
        """Get the schedule state of a source (None if not schedulable)."""
        return self._states.get(name)

    def tick(self, now: Optional[float] = None) -> TickReport:
        """
        Run one scan over all sources and dispatch whatever is due.

        Args:
            now: Epoch seconds to evaluate against (default: clock())

        Returns:
            TickReport listing dispatched fetches and prunes
        """
        report = TickReport()

        with self._tick_lock:
            if now is None:
                now = self._clock()

            for source in self._sources:
                state = self._states[source.name]

                if is_due(state.last_fetch_at, source.poll_interval_seconds, now):
                    state.last_fetch_at = now
                    if self._try_dispatch(f"fetch-{source.name}", self._fetch_job(source)):
                        state.fetches_dispatched += 1
                        report.fetched.append(source.name)

                if source.is_prunable and is_due(
                    state.last_prune_at, source.retention.check_interval_seconds, now
                ):
                    state.last_prune_at = now
                    cutoff = _to_datetime(now - source.retention.age_seconds)
                    if self._try_dispatch(f"prune-{source.name}", self._prune_job(source, cutoff)):
                        state.prunes_dispatched += 1
                        report.pruned.append((source.name, cutoff))

            self._last_tick = now

        return report

    def _try_dispatch(self, name: str, work: Callable[[], None]) -> bool:
        """Hand work to the dispatcher; a failure is logged and the scan goes on."""
        try:
            self._dispatch(name, work)
        except Exception as e:
            logger.exception(f"Failed to dispatch '{name}': {e}")
            return False
        return True

    def _fetch_job(self, source: SourceDefinition) -> Callable[[], None]:
        def work() -> None:
            try:
                self.run_fetch(source)
            except Exception as e:
                logger.exception(f"Unexpected error fetching '{source.name}': {e}")
        return work

    def _prune_job(self, source: SourceDefinition, cutoff: datetime) -> Callable[[], None]:
        def work() -> None:
            try:
                self.pruner.prune(source.name, cutoff)
            except Exception as e:
                logger.exception(f"Unexpected error pruning '{source.name}': {e}")
        return work

    def run_fetch(self, source: SourceDefinition) -> bool:
        """
        Fetch one reading for a source and store it.

        Returns:
            True if a sample was written
        """
        logger.debug(f"Data processing for the '{source.name}' request")
        result = self.fetcher.fetch(source.name, source.fetch)

        if not result.ok:
            with self._health_lock:
                health = self._health[source.name]
                health.fetch_failures += 1
                health.last_error = result.error
            return False

        written = self.ingestor.ingest(source.name, result.value, _to_datetime(self._clock()))
        with self._health_lock:
            health = self._health[source.name]
            if written:
                health.samples_written += 1
                health.last_success_at = self._clock()
            else:
                health.last_error = "store write failed"
        return written

    def start(self, threaded: bool = True) -> None:
        """
        Start the tick loop.

        Args:
            threaded: If True, run in background thread
        """
        self._running = True

        if threaded:
            self._thread = threading.Thread(target=self._run_loop, name="scheduler", daemon=True)
            self._thread.start()
            logger.info("Scheduler started in background thread")
        else:
            self._run_loop()

    def stop(self) -> None:
        """Stop the tick loop. In-flight fetches and prunes run to completion."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=10)
            self._thread = None
        logger.info("Scheduler stopped")

    def _run_loop(self) -> None:
        """Main tick loop."""
        logger.info(f"Scheduler running: {len(self._sources)} sources, tick={self.tick_seconds}s")

        while self._running:
            try:
                self.tick()
            except Exception as e:
                logger.exception(f"Error in scheduler tick: {e}")
            time.sleep(self.tick_seconds)

        logger.info("Scheduler exiting")

    @property
    def is_running(self) -> bool:
        """Check if the loop is running."""
        return self._running

    @property
    def last_tick(self) -> Optional[datetime]:
        """Get the timestamp of the last tick."""
        return _to_datetime(self._last_tick) if self._last_tick is not None else None

    def get_status(self) -> dict[str, dict]:
        """Get per-source schedule and health status for display."""
        status: dict[str, dict] = {}
        with self._health_lock:
            for source in self._sources:
                state = self._states[source.name]
                health = self._health[source.name]
                status[source.name] = {
                    "interval": source.poll_interval_seconds,
                    "retention_age": source.retention.age_seconds if source.is_prunable else None,
                    "last_fetch_at": _to_datetime(state.last_fetch_at) if state.last_fetch_at is not None else None,
                    "last_prune_at": _to_datetime(state.last_prune_at) if state.last_prune_at is not None else None,
                    "fetches": state.fetches_dispatched,
                    "prunes": state.prunes_dispatched,
                    "failures": health.fetch_failures,
                    "samples": health.samples_written,
                    "last_error": health.last_error,
                }
        return status
