"""
Sample ingest and retention pruning.

Both operations are terminal per occurrence: a store failure is logged with
the source name and swallowed so the scheduler keeps running.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from loguru import logger

from .errors import StoreDeleteError, StoreWriteError
from .store import Sample, TimeSeriesStore, get_store


class Ingestor:
    """Writes one sample per successful fetch."""

    def __init__(self, store: Optional[TimeSeriesStore] = None):
        self.store = store or get_store()

    def ingest(self, source_name: str, value: float, timestamp: datetime) -> bool:
        """
        Write a reading for a source.

        Returns:
            True if the sample was stored
        """
        sample = Sample(measurement=source_name, value=value, timestamp=timestamp)
        try:
            self.store.write(sample)
        except StoreWriteError as e:
            logger.error(f"An error occurred while saving data for '{source_name}': {e}")
            return False

        logger.debug(f"Saved {source_name}={value} at {timestamp.isoformat()}")
        return True


class Pruner:
    """Deletes samples older than a source's retention cutoff."""

    def __init__(self, store: Optional[TimeSeriesStore] = None):
        self.store = store or get_store()

    def prune(self, source_name: str, cutoff: datetime) -> Optional[int]:
        """
        Delete samples of a source older than cutoff.

        Returns:
            Number of samples deleted, or None if the delete failed
        """
        try:
            deleted = self.store.delete(source_name, cutoff)
        except StoreDeleteError as e:
            logger.error(f"An error occurred while pruning '{source_name}': {e}")
            return None

        if deleted > 0:
            logger.info(f"Pruned {deleted} samples of '{source_name}' older than {cutoff.isoformat()}")
        return deleted
