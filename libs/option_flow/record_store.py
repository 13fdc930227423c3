"""
In-memory record store for the active subscription.

Newest record first. Written from the stream task, read from request
handlers or other threads; every operation holds one lock so readers see a
list either before or after a mutation, never in between.
"""

import threading
from collections.abc import Iterable

from libs.option_flow.types import SummaryRecord


class RecordStore:
    """Thread-safe, newest-first list of SummaryRecords."""

    def __init__(self, max_records: int | None = None) -> None:
        """
        Args:
            max_records: Optional cap; the oldest records are dropped past it
        """
        self._records: list[SummaryRecord] = []
        self._lock = threading.RLock()
        self._max_records = max_records

    def prepend(self, record: SummaryRecord) -> None:
        """Insert a record at the front."""
        with self._lock:
            self._records.insert(0, record)
            if self._max_records is not None and len(self._records) > self._max_records:
                del self._records[self._max_records :]

    def clear(self) -> None:
        with self._lock:
            self._records = []

    def replace(self, records: Iterable[SummaryRecord]) -> None:
        """Swap the whole content (records given newest first)."""
        new_records = list(records)
        with self._lock:
            self._records = new_records

    def snapshot(self) -> tuple[SummaryRecord, ...]:
        """Immutable copy of the current content, newest first."""
        with self._lock:
            return tuple(self._records)

    def latest(self) -> SummaryRecord | None:
        with self._lock:
            return self._records[0] if self._records else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
