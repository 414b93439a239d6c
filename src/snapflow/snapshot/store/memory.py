"""In-process snapshot table store.

State is held as one immutable tuple of (history, run id, last run
timestamp) that is replaced wholesale when a transaction commits, so
readers never take the lock and never observe a half-applied run.
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from snapflow.common.exceptions import ErrorCode, integrity_error
from snapflow.logging import get_logger
from snapflow.snapshot.store.base import SnapshotTableStore, StoreTransaction, _sort_key
from snapflow.snapshot.types import CurrentSnapshotIndex, SnapshotKey, SnapshotRow, VersionClose
from snapflow.utils.datetime import ensure_utc

logger = get_logger(__name__)

_State = Tuple[Tuple[SnapshotRow, ...], int, Optional[datetime]]


class _MemoryTransaction(StoreTransaction):
    """Stages writes on a private copy of the history."""

    def __init__(self, target: str, run_id: int, rows: Sequence[SnapshotRow]):
        super().__init__(run_id)
        self.target = target
        self.rows: List[SnapshotRow] = list(rows)
        self._current: Dict[SnapshotKey, int] = {
            row.key: pos for pos, row in enumerate(self.rows) if row.is_current
        }

    def append_versions(self, rows: Sequence[SnapshotRow]) -> int:
        for row in rows:
            if row.key in self._current:
                raise integrity_error(
                    f"Key {row.key} already has a current version",
                    target=self.target,
                    error_code=ErrorCode.DUPLICATE_CURRENT,
                )
            self._current[row.key] = len(self.rows)
            self.rows.append(row.model_copy(update={"run_id": self.run_id}))
        return len(rows)

    def _close(self, pos: int, close_timestamp: datetime) -> None:
        row = self.rows[pos]
        if close_timestamp <= row.valid_from:
            raise integrity_error(
                f"Cannot close version {row.version_id} at {close_timestamp.isoformat()}: "
                f"it opened at {row.valid_from.isoformat()}",
                target=self.target,
            )
        self.rows[pos] = row.closed(close_timestamp)
        del self._current[row.key]

    def close_versions(self, closes: Sequence[VersionClose], close_timestamp: datetime) -> int:
        close_timestamp = ensure_utc(close_timestamp)
        for close in closes:
            pos = self._current.get(close.key)
            if pos is None or self.rows[pos].version_id != close.version_id:
                raise integrity_error(
                    f"Version {close.version_id} of key {close.key} is not current",
                    target=self.target,
                    error_code=ErrorCode.VERSION_NOT_CURRENT,
                )
            self._close(pos, close_timestamp)
        return len(closes)

    def hard_invalidate(self, keys: Sequence[SnapshotKey], close_timestamp: datetime) -> int:
        close_timestamp = ensure_utc(close_timestamp)
        closed = 0
        for key in keys:
            pos = self._current.get(key)
            if pos is None:
                continue
            self._close(pos, close_timestamp)
            closed += 1
        return closed


class InMemorySnapshotTableStore(SnapshotTableStore):
    """Snapshot table kept in process memory.

    Suitable for tests and for small targets whose history is persisted
    elsewhere. Writers are serialized by a lock; readers see the last
    committed state.

    Example:
        >>> store = InMemorySnapshotTableStore("customers")
        >>> store.current_index().run_id
        0
    """

    def __init__(self, target: str = "snapshot"):
        super().__init__(target)
        self._lock = threading.Lock()
        self._state: _State = ((), 0, None)

    def current_index(self) -> CurrentSnapshotIndex:
        rows, run_id, last_run_timestamp = self._state
        current = {row.key: row for row in rows if row.is_current}
        retired = frozenset(row.key for row in rows if row.key not in current)
        return CurrentSnapshotIndex(
            current=current,
            retired_keys=retired,
            run_id=run_id,
            last_run_timestamp=last_run_timestamp,
        )

    def history(self, key: Optional[SnapshotKey] = None) -> List[SnapshotRow]:
        rows = self._state[0]
        if key is not None:
            key = tuple(key)
            rows = tuple(row for row in rows if row.key == key)
        return sorted(rows, key=lambda row: (_sort_key(row.key), row.valid_from))

    @contextmanager
    def transaction(
        self,
        expected_run_id: Optional[int] = None,
        run_timestamp: Optional[datetime] = None,
    ) -> Iterator[StoreTransaction]:
        with self._lock:
            rows, run_id, last_run_timestamp = self._state
            if expected_run_id is not None and expected_run_id != run_id:
                raise integrity_error(
                    f"Snapshot '{self.target}' advanced to run {run_id} "
                    f"while a run planned against {expected_run_id} was applying",
                    target=self.target,
                    error_code=ErrorCode.CONCURRENT_RUN,
                )

            tx = _MemoryTransaction(self.target, run_id + 1, rows)
            yield tx

            committed_at = ensure_utc(run_timestamp) if run_timestamp else last_run_timestamp
            self._state = (tuple(tx.rows), tx.run_id, committed_at)
            logger.debug(
                "Committed in-memory snapshot transaction",
                extra={"target": self.target, "store_run_id": tx.run_id, "history_rows": len(tx.rows)},
            )
