"""Check-strategy SCD Type-2 reconciliation.

A run reads the current snapshot index once, classifies every row of a
full source extract against it, and applies the resulting closes,
invalidations and appends as one store transaction:

    insert      key never seen before          -> open a version
    update      fingerprint differs            -> close current, open a version
    unchanged   fingerprint equal              -> no write
    invalidate  current key missing from extract (hard-delete mode)
                                               -> close current, no successor
    reinsert    previously invalidated key back -> open a version

Every version opened or closed by a run uses the run timestamp, so a
superseded version's ``valid_to`` equals its successor's ``valid_from``.
"""

import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from snapflow.common.exceptions import ErrorCode, SnapflowError, configuration_error, integrity_error
from snapflow.constants import ChangeType, DuplicateKeyPolicy
from snapflow.logging import get_logger
from snapflow.observability import sanitize_extras
from snapflow.snapshot.hasher import RowHasher
from snapflow.snapshot.store.base import SnapshotTableStore
from snapflow.snapshot.types import (
    CurrentSnapshotIndex,
    ReconcilePlan,
    ReconcileResult,
    RowError,
    SnapshotConfig,
    SnapshotKey,
    SnapshotRow,
    VersionClose,
)
from snapflow.utils.datetime import ensure_utc, get_current_timestamp
from snapflow.utils.decorators import traced

logger = get_logger(__name__)


@dataclass(frozen=True)
class _HashedRow:
    row_index: int
    key: SnapshotKey
    fingerprint: str
    data: Dict[str, Any]


class Reconciler:
    """Computes and applies the SCD Type-2 changes for one snapshot target.

    Args:
        config: Snapshot configuration.
        store: Table store holding the target's versions.
        hasher: Row hasher; built from ``config`` when omitted.
        max_workers: Threads used to fingerprint large extracts.
        parallel_threshold: Extract size from which fingerprinting is
            spread over ``max_workers`` threads.
        clock: Source of the default run timestamp.

    Example:
        >>> reconciler = Reconciler(
        ...     SnapshotConfig(target="customers", unique_key=["id"]),
        ...     InMemorySnapshotTableStore("customers"),
        ... )
        >>> result = reconciler.reconcile([{"id": 1, "city": "Seattle"}])
        >>> result.inserted
        1
    """

    def __init__(
        self,
        config: SnapshotConfig,
        store: SnapshotTableStore,
        hasher: Optional[RowHasher] = None,
        max_workers: int = 1,
        parallel_threshold: int = 10000,
        clock: Callable[[], datetime] = get_current_timestamp,
    ):
        self.config = config
        self.store = store
        self.hasher = hasher or RowHasher.from_config(config)
        self.max_workers = max(1, max_workers)
        self.parallel_threshold = parallel_threshold
        self.clock = clock

    # Fingerprinting

    def _hash_row(self, row_index: int, row: Mapping[str, Any]) -> Union[_HashedRow, RowError]:
        try:
            key = self.hasher.key_of(row)
        except SnapflowError as exc:
            if exc.error_code == ErrorCode.MISSING_COLUMN:
                raise
            return RowError.from_exception(exc, row_index=row_index)

        # A missing tracked column is a schema problem and fails the run
        fingerprint = self.hasher.fingerprint(row)
        return _HashedRow(row_index=row_index, key=key, fingerprint=fingerprint, data=dict(row))

    def _hash_chunk(self, start: int, rows: Sequence[Mapping[str, Any]]) -> List[Union[_HashedRow, RowError]]:
        return [self._hash_row(start + offset, row) for offset, row in enumerate(rows)]

    def _hash_rows(self, rows: Sequence[Mapping[str, Any]]) -> List[Union[_HashedRow, RowError]]:
        if self.max_workers == 1 or len(rows) < self.parallel_threshold:
            return self._hash_chunk(0, rows)

        chunk_size = math.ceil(len(rows) / self.max_workers)
        logger.debug(
            "Fingerprinting extract in parallel",
            extra={"target": self.config.target, "rows": len(rows), "max_workers": self.max_workers},
        )
        results: List[Union[_HashedRow, RowError]] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="snapflow-hash") as pool:
            futures = [
                pool.submit(self._hash_chunk, start, rows[start:start + chunk_size])
                for start in range(0, len(rows), chunk_size)
            ]
            for future in futures:
                results.extend(future.result())
        return results

    # Planning

    def _row_error(self, plan: ReconcilePlan, error: RowError) -> None:
        if self.config.strict_mode:
            logger.error(
                "Row error in strict mode, aborting run before any write",
                extra={"target": self.config.target, "error_code": error.error_code, "row_index": error.row_index},
            )
            raise error.to_exception()
        plan.errors.append(error)

    def _resolve_duplicates(
        self,
        plan: ReconcilePlan,
        hashed: List[_HashedRow],
        present: set,
    ) -> List[_HashedRow]:
        by_key: Dict[SnapshotKey, List[_HashedRow]] = {}
        for row in hashed:
            by_key.setdefault(row.key, []).append(row)
            present.add(row.key)

        policy = DuplicateKeyPolicy(self.config.duplicate_key_policy)
        resolved: List[_HashedRow] = []
        for key, occurrences in by_key.items():
            if len(occurrences) == 1:
                resolved.append(occurrences[0])
            elif policy == DuplicateKeyPolicy.KEEP_FIRST:
                resolved.append(occurrences[0])
            elif policy == DuplicateKeyPolicy.KEEP_LAST:
                resolved.append(occurrences[-1])
            else:
                for row in occurrences:
                    self._row_error(
                        plan,
                        RowError(
                            row_index=row.row_index,
                            key=key,
                            error_code=ErrorCode.DUPLICATE_KEY.value,
                            message=f"Key {key} appears {len(occurrences)} times in the extract",
                        ),
                    )

        resolved.sort(key=lambda row: row.row_index)
        return resolved

    def _new_version(self, row: _HashedRow, run_timestamp: datetime) -> SnapshotRow:
        return SnapshotRow(
            key=row.key,
            data=row.data,
            fingerprint=row.fingerprint,
            version_id=self.hasher.version_id(row.key, row.fingerprint, run_timestamp),
            valid_from=run_timestamp,
        )

    def _classify(self, row: _HashedRow, index: CurrentSnapshotIndex) -> ChangeType:
        current = index.get(row.key)
        if current is None:
            if row.key in index.retired_keys:
                return ChangeType.REINSERT
            return ChangeType.INSERT
        if current.fingerprint == row.fingerprint:
            return ChangeType.UNCHANGED
        return ChangeType.UPDATE

    @traced(
        span_name="snapflow.reconciler.plan",
        attribute_getter=lambda self, *args, **kwargs: {"snapflow.snapshot.target": self.config.target},
    )
    def plan(
        self,
        source_extract: Iterable[Mapping[str, Any]],
        run_timestamp: Optional[datetime] = None,
        snapshot_state: Optional[CurrentSnapshotIndex] = None,
    ) -> ReconcilePlan:
        """Classify the extract against the current index without writing.

        Raises:
            ConfigurationError: If the run timestamp precedes the last committed
                run, or a configured column is absent from the extract.
            SnapflowError: The first row error, in strict mode.
        """
        run_timestamp = ensure_utc(run_timestamp) if run_timestamp else ensure_utc(self.clock())
        index = snapshot_state if snapshot_state is not None else self.store.current_index()

        if index.last_run_timestamp is not None and run_timestamp < index.last_run_timestamp:
            raise configuration_error(
                f"Run timestamp {run_timestamp.isoformat()} precedes the last run of "
                f"'{self.config.target}' at {index.last_run_timestamp.isoformat()}",
                config_key="run_timestamp",
                error_code=ErrorCode.STALE_RUN_TIMESTAMP,
            )

        plan = ReconcilePlan(
            target=self.config.target,
            run_timestamp=run_timestamp,
            expected_run_id=index.run_id,
        )

        rows = list(source_extract)
        hashed: List[_HashedRow] = []
        for item in self._hash_rows(rows):
            if isinstance(item, RowError):
                self._row_error(plan, item)
            else:
                hashed.append(item)

        present: set = set()
        for row in self._resolve_duplicates(plan, hashed, present):
            change = self._classify(row, index)

            if change == ChangeType.UNCHANGED:
                plan.unchanged += 1
            elif change == ChangeType.INSERT:
                plan.inserts.append(self._new_version(row, run_timestamp))
                plan.inserted += 1
            elif change == ChangeType.REINSERT:
                if not self.config.reinsert_invalidated:
                    self._row_error(
                        plan,
                        RowError(
                            row_index=row.row_index,
                            key=row.key,
                            error_code=ErrorCode.KEY_INVALIDATED.value,
                            message=f"Key {row.key} was invalidated and reinsertion is disabled",
                        ),
                    )
                    continue
                plan.inserts.append(self._new_version(row, run_timestamp))
                plan.reinserted += 1
            else:
                current = index.get(row.key)
                if current.valid_from >= run_timestamp:
                    self._row_error(
                        plan,
                        RowError(
                            row_index=row.row_index,
                            key=row.key,
                            error_code=ErrorCode.STALE_RUN_TIMESTAMP.value,
                            message=(
                                f"Current version of key {row.key} opened at "
                                f"{current.valid_from.isoformat()}, not before the run timestamp"
                            ),
                        ),
                    )
                    continue
                plan.closes.append(VersionClose(key=row.key, version_id=current.version_id))
                plan.inserts.append(self._new_version(row, run_timestamp))
                plan.updated += 1

        if self.config.invalidate_hard_deletes:
            for key, current in index.current.items():
                if key in present:
                    continue
                if current.valid_from >= run_timestamp:
                    self._row_error(
                        plan,
                        RowError(
                            key=key,
                            error_code=ErrorCode.STALE_RUN_TIMESTAMP.value,
                            message=f"Cannot invalidate key {key}: its current version opened at or after the run timestamp",
                        ),
                    )
                    continue
                plan.invalidations.append(key)

        return plan

    # Applying

    @traced(
        span_name="snapflow.reconciler.apply",
        attribute_getter=lambda self, plan: {
            "snapflow.snapshot.target": plan.target,
            "snapflow.reconcile.inserts": len(plan.inserts),
            "snapflow.reconcile.closes": len(plan.closes),
            "snapflow.reconcile.invalidations": len(plan.invalidations),
        },
    )
    def apply(self, plan: ReconcilePlan) -> ReconcileResult:
        """Apply a plan as one store transaction.

        A plan without writes opens no transaction and leaves the run id
        untouched.

        Raises:
            IntegrityError: If the store moved on since the plan was computed,
                or the transaction failed. Nothing is written in either case.
            ConnectivityError: If the store is unreachable.
        """
        result = ReconcileResult(
            target=plan.target,
            run_id=plan.expected_run_id,
            run_timestamp=plan.run_timestamp,
            inserted=plan.inserted,
            updated=plan.updated,
            invalidated=plan.invalidated,
            reinserted=plan.reinserted,
            unchanged=plan.unchanged,
            errors=plan.errors,
        )
        if not plan.has_writes:
            return result

        with self.store.transaction(
            expected_run_id=plan.expected_run_id,
            run_timestamp=plan.run_timestamp,
        ) as tx:
            tx.close_versions(plan.closes, plan.run_timestamp)
            invalidated = tx.hard_invalidate(plan.invalidations, plan.run_timestamp)
            if invalidated != len(plan.invalidations):
                raise integrity_error(
                    f"Expected to invalidate {len(plan.invalidations)} keys, store closed {invalidated}",
                    target=plan.target,
                )
            tx.append_versions(plan.inserts)
            run_id = tx.run_id

        result.run_id = run_id
        result.applied = True
        return result

    def reconcile(
        self,
        source_extract: Iterable[Mapping[str, Any]],
        run_timestamp: Optional[datetime] = None,
        snapshot_state: Optional[CurrentSnapshotIndex] = None,
    ) -> ReconcileResult:
        """Plan and apply one run.

        Args:
            source_extract: Complete, consistent extract of the source relation.
            run_timestamp: Timestamp stamped on every version opened or closed;
                defaults to the current UTC time.
            snapshot_state: Pre-read current index; read from the store when
                omitted.

        Returns:
            Change counts, row errors and the store run id.
        """
        start_time = time.time()
        plan = self.plan(source_extract, run_timestamp=run_timestamp, snapshot_state=snapshot_state)
        result = self.apply(plan)

        logger.info(
            "reconcile.completed",
            extra=sanitize_extras(
                {
                    "target": result.target,
                    "store_run_id": result.run_id,
                    "run_timestamp": result.run_timestamp.isoformat(),
                    "inserted": result.inserted,
                    "updated": result.updated,
                    "invalidated": result.invalidated,
                    "reinserted": result.reinserted,
                    "unchanged": result.unchanged,
                    "row_errors": len(result.errors),
                    "applied": result.applied,
                    "duration.seconds": f"{time.time() - start_time:.6f}",
                }
            ),
        )
        for error in result.errors:
            logger.warning(
                "reconcile.row_error",
                extra=sanitize_extras(
                    {"target": result.target, "error_code": error.error_code, "row_index": error.row_index, "key": error.key}
                ),
            )
        return result
