#!/usr/bin/env python3
"""
Entry point for the metric node service.

Starts the scheduler loop and the HTTP datasource API:
- Scheduler: polls sources on their intervals and prunes by retention
- API: serves search/query/annotations/tag-keys/tag-values over HTTP

Usage:
  python -m metric_node                 # Scheduler + HTTP API
  python -m metric_node --no-server     # Scheduler only
  python -m metric_node --once          # Run a single tick and exit
  python -m metric_node --status        # Show configured sources and exit
  python -m metric_node --selfcheck     # Validate config and store, then exit
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from pathlib import Path
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console

load_dotenv()

from .api import create_app
from .config import NodeSettings, load_config
from .errors import ConfigError
from .fetchers import Fetcher
from .ingest import Ingestor, Pruner
from .query import QueryTranslator, SearchProvider
from .scheduler import Dispatch, Scheduler, spawn_thread
from .store import get_store
from .ui import make_sources_table, print_status


def configure_logging(log_file: bool = True, verbose: bool = False) -> None:
    """Configure loguru logging."""
    logger.remove()

    # Console output
    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level:<8}</level> | <cyan>{name}</cyan> - {message}",
        level=level,
        colorize=True,
    )

    # File output
    if log_file:
        log_dir = Path(os.environ.get("DATA_ROOT", ".")) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "metric_node.log"

        logger.add(
            log_path,
            rotation="10 MB",
            retention="7 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name} - {message}",
            level="DEBUG",
        )
        logger.info(f"Logging to {log_path}")


def selfcheck(config_path: Optional[Path] = None) -> bool:
    """
    Validate the config file and open the store.

    Returns:
        True if all checks pass
    """
    logger.info("Running self-checks...")
    errors = []
    warnings = []

    try:
        settings, registry = load_config(config_path)
    except ConfigError as e:
        logger.error(f"Config error: {e}")
        logger.error("Self-check FAILED")
        return False

    if not registry.schedulable():
        warnings.append("No active sources with a poll interval, nothing will be fetched")

    no_timeout = [s.name for s in registry.schedulable() if s.fetch.timeout is None]
    if no_timeout:
        warnings.append(f"No fetch timeout configured for: {', '.join(no_timeout)}")

    try:
        store = get_store(settings.db_path)
        logger.info(f"Store OK: {store.count()} samples in {store.db_path}")
    except Exception as e:
        errors.append(f"Store error: {e}")

    for warning in warnings:
        logger.warning(warning)

    if errors:
        for error in errors:
            logger.error(error)
        logger.error("Self-check FAILED")
        return False

    logger.info("Self-check PASSED")
    return True


def show_status(config_path: Optional[Path] = None) -> None:
    """Show configured sources and stored sample counts, then exit."""
    settings, registry = load_config(config_path)
    print_status(registry, store=get_store(settings.db_path))


def build_node(
    config_path: Optional[Path] = None,
    dispatch: Dispatch = spawn_thread,
) -> tuple[NodeSettings, Scheduler, QueryTranslator, SearchProvider]:
    """Wire registry, store, scheduler, and query side from config."""
    settings, registry = load_config(config_path)
    store = get_store(settings.db_path)

    scheduler = Scheduler(
        registry,
        fetcher=Fetcher(),
        ingestor=Ingestor(store),
        pruner=Pruner(store),
        tick_seconds=settings.tick_seconds,
        dispatch=dispatch,
    )
    return settings, scheduler, QueryTranslator(registry, store), SearchProvider(registry)


def run_once(config_path: Optional[Path] = None) -> None:
    """Run a single tick with every fetch and prune executed inline."""
    _, scheduler, _, _ = build_node(config_path, dispatch=lambda name, work: work())
    report = scheduler.tick()
    logger.info(f"Tick complete: {len(report.fetched)} fetched, {len(report.pruned)} pruned")


def run_node(
    config_path: Optional[Path] = None,
    with_server: bool = True,
    verbose: bool = False,
) -> None:
    """
    Run the metric node.

    Args:
        config_path: Sources config file
        with_server: Serve the HTTP API alongside the scheduler
        verbose: Enable verbose logging
    """
    configure_logging(log_file=True, verbose=verbose)

    logger.info("Starting metric node...")

    if not selfcheck(config_path):
        logger.error("Self-check failed, aborting")
        sys.exit(1)

    settings, scheduler, translator, search = build_node(config_path)
    scheduler.start(threaded=True)

    try:
        if with_server:
            app = create_app(translator, search)
            logger.info(f"HTTP Server is running and listening at http://{settings.host}:{settings.port}")
            uvicorn.run(app, host=settings.host, port=settings.port, log_level="warning")
        else:
            _wait_for_shutdown()
    finally:
        scheduler.stop()
        Console(stderr=True).print(make_sources_table(scheduler.registry, schedule=scheduler.get_status()))
        logger.info("Metric node stopped")


def _wait_for_shutdown() -> None:
    """Block until SIGINT/SIGTERM."""
    shutdown_requested = False

    def handle_shutdown(signum, frame):
        nonlocal shutdown_requested
        if shutdown_requested:
            logger.warning("Force shutdown requested")
            sys.exit(1)
        logger.info("Shutdown requested, stopping scheduler...")
        shutdown_requested = True

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    logger.info("Metric node running. Press Ctrl-C to stop.")
    while not shutdown_requested:
        time.sleep(1)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Metric node: poll sources, store samples, serve dashboard queries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Sources config file (default: $METRIC_NODE_CONFIG or configs/sources.yml)",
    )
    parser.add_argument(
        "--no-server",
        action="store_true",
        help="Run the scheduler without the HTTP API",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scheduler tick and exit",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show configured sources and exit",
    )
    parser.add_argument(
        "--selfcheck",
        action="store_true",
        help="Run self-checks and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.status:
        configure_logging(log_file=False, verbose=args.verbose)
        show_status(args.config)
        return

    if args.selfcheck:
        configure_logging(log_file=False, verbose=args.verbose)
        success = selfcheck(args.config)
        sys.exit(0 if success else 1)

    if args.once:
        configure_logging(log_file=False, verbose=args.verbose)
        run_once(args.config)
        return

    run_node(args.config, with_server=not args.no_server, verbose=args.verbose)


if __name__ == "__main__":
    main()
