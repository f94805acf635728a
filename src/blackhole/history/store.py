"""Burn history — bounded, append-only, newest-first log of confirmed burns.

This is the canonical input to every derived view: reputation, tiers,
achievements, analytics, and proofs are all recomputed from it.

Invariants:
- length <= capacity at all times
- order is confirmation order, newest first
- no update and no delete; the only removal is capacity eviction,
  oldest first
- a tx reference appears at most once among retained records
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Optional, Tuple

from blackhole.models.burn import BurnRecord


DEFAULT_CAPACITY = 10


class BurnHistoryStore:
    """Single-writer, many-reader burn log.

    Usage:
        history = BurnHistoryStore(capacity=10)
        evicted = history.append(record)
        for record in history.all():
            ...
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self._capacity = capacity
        self._records: Deque[BurnRecord] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, record: BurnRecord) -> Optional[BurnRecord]:
        """Prepend a confirmed burn, evicting the oldest if over capacity.

        Returns the evicted record, if any. Raises ValueError if the
        tx reference is already present (duplicate confirmation).
        """
        if self.contains(record.tx_ref):
            raise ValueError(f"Burn already recorded: {record.tx_ref}")
        self._records.appendleft(record)
        if len(self._records) > self._capacity:
            return self._records.pop()
        return None

    def all(self) -> Tuple[BurnRecord, ...]:
        """Snapshot of the history, newest first."""
        return tuple(self._records)

    def get(self, tx_ref: str) -> Optional[BurnRecord]:
        wanted = tx_ref.lower()
        for record in self._records:
            if record.tx_ref.lower() == wanted:
                return record
        return None

    def contains(self, tx_ref: str) -> bool:
        return self.get(tx_ref) is not None

    @property
    def newest(self) -> Optional[BurnRecord]:
        return self._records[0] if self._records else None

    @property
    def oldest(self) -> Optional[BurnRecord]:
        return self._records[-1] if self._records else None

    def __len__(self) -> int:
        return len(self._records)
