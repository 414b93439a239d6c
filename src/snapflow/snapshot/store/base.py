"""Snapshot table store interface.

A store wraps an ACID-capable table of snapshot versions. Writes happen
inside ``transaction()``: on entry the store compare-and-swaps its
monotonic run id, and everything written through the yielded
``StoreTransaction`` becomes visible at once on exit or not at all.
The standalone write methods open a single-statement transaction of
their own.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Sequence

import pandas as pd

from snapflow.common.exceptions import ErrorCode, integrity_error
from snapflow.snapshot.types import (
    CurrentSnapshotIndex,
    SnapshotKey,
    SnapshotRow,
    VersionClose,
)
from snapflow.utils.datetime import ensure_utc


class StoreTransaction(ABC):
    """Write handle valid inside one ``SnapshotTableStore.transaction()``.

    Attributes:
        run_id: Run id claimed by this transaction; stamped on appended rows.
    """

    def __init__(self, run_id: int):
        self.run_id = run_id

    @abstractmethod
    def append_versions(self, rows: Sequence[SnapshotRow]) -> int:
        """Append new version rows.

        Raises:
            IntegrityError: If a row would become a second current version
                of its key.
        """

    @abstractmethod
    def close_versions(self, closes: Sequence[VersionClose], close_timestamp: datetime) -> int:
        """Set ``valid_to`` on the named current versions.

        Raises:
            IntegrityError: If any named version is not current.
        """

    @abstractmethod
    def hard_invalidate(self, keys: Sequence[SnapshotKey], close_timestamp: datetime) -> int:
        """Close the current version of each key with no successor.

        Returns:
            Number of versions closed.
        """


class SnapshotTableStore(ABC):
    """Base class for snapshot table backends.

    Subclasses implement the reads and ``transaction()``; the standalone
    write operations are provided here on top of ``transaction()``.

    Attributes:
        target: Name under which the store keeps its run id.
    """

    def __init__(self, target: str):
        self.target = target

    # Reads

    @abstractmethod
    def current_index(self) -> CurrentSnapshotIndex:
        """Read every current version, retired keys and the run id at once."""

    @abstractmethod
    def history(self, key: Optional[SnapshotKey] = None) -> List[SnapshotRow]:
        """Full history ordered by key then ``valid_from``."""

    def current_version(self, key: SnapshotKey) -> Optional[SnapshotRow]:
        """Current version of ``key``, or None if the key is untracked or retired."""
        current = [row for row in self.history(key) if row.is_current]
        if len(current) > 1:
            raise integrity_error(
                f"Key {key} has {len(current)} current versions",
                target=self.target,
                error_code=ErrorCode.DUPLICATE_CURRENT,
            )
        return current[0] if current else None

    def current_versions(self) -> List[SnapshotRow]:
        """Current version of every tracked key, ordered by key."""
        index = self.current_index()
        return sorted(index.current.values(), key=lambda row: _sort_key(row.key))

    def as_of(self, timestamp: datetime) -> List[SnapshotRow]:
        """Versions that were current at ``timestamp`` (time-travel read)."""
        at = ensure_utc(timestamp)
        return [
            row for row in self.history()
            if row.valid_from <= at and (row.valid_to is None or row.valid_to > at)
        ]

    def history_frame(self) -> pd.DataFrame:
        """Full history view as a DataFrame of source plus system columns."""
        return pd.DataFrame([row.to_record() for row in self.history()])

    def last_run_id(self) -> int:
        return self.current_index().run_id

    # Writes

    @abstractmethod
    @contextmanager
    def transaction(
        self,
        expected_run_id: Optional[int] = None,
        run_timestamp: Optional[datetime] = None,
    ) -> Iterator[StoreTransaction]:
        """Open an atomic write unit.

        Args:
            expected_run_id: Run id read with the index the writes were planned
                against. If the store has moved on since, ``IntegrityError``
                (``CONCURRENT_RUN``) is raised and nothing is written.
            run_timestamp: Timestamp recorded with the new run id.
        """

    def append_versions(self, rows: Sequence[SnapshotRow]) -> int:
        with self.transaction() as tx:
            return tx.append_versions(rows)

    def close_versions(self, closes: Sequence[VersionClose], close_timestamp: datetime) -> int:
        with self.transaction(run_timestamp=close_timestamp) as tx:
            return tx.close_versions(closes, close_timestamp)

    def hard_invalidate(self, keys: Sequence[SnapshotKey], close_timestamp: datetime) -> int:
        with self.transaction(run_timestamp=close_timestamp) as tx:
            return tx.hard_invalidate(keys, close_timestamp)


def _sort_key(key: SnapshotKey):
    # Mixed-type keys (1 vs "1") must still sort deterministically
    return tuple((type(part).__name__, part) for part in key)
