"""SQLAlchemy-backed snapshot table store.

Versions of every target live in one versions table keyed by
``(target, version_id)``; a runs table holds the monotonic run id per
target. A write transaction first compare-and-swaps the target's run id,
then applies its writes on the same connection, so either all of a run
becomes visible or none of it does.
"""

import time
from contextlib import contextmanager
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    select,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine, make_url

from snapflow.common.exceptions import (
    ErrorCode,
    SnapflowError,
    configuration_error,
    connection_error,
    integrity_error,
)
from snapflow.logging import get_logger
from snapflow.settings.store import StoreSettings
from snapflow.snapshot.hasher import canonical_key, is_missing, parse_canonical_key
from snapflow.snapshot.store.base import SnapshotTableStore, StoreTransaction, _sort_key
from snapflow.snapshot.types import CurrentSnapshotIndex, SnapshotKey, SnapshotRow, VersionClose
from snapflow.utils.datetime import ensure_utc
from snapflow.utils.decorators import traced

logger = get_logger(__name__)

# Bound parameters per IN clause; stays under SQLite's variable limit
_CHUNK_SIZE = 500


def build_tables(
    metadata: MetaData,
    table_name: str = "snapshot_versions",
    runs_table_name: str = "snapshot_runs",
    schema: Optional[str] = None,
):
    """Declare the versions and runs tables on ``metadata``."""
    versions = Table(
        table_name,
        metadata,
        Column("target", String(256), primary_key=True),
        Column("version_id", String(128), primary_key=True),
        Column("snapshot_key", Text, nullable=False),
        Column("fingerprint", String(128), nullable=False),
        Column("row_data", JSON, nullable=False),
        Column("valid_from", DateTime(timezone=True), nullable=False),
        Column("valid_to", DateTime(timezone=True), nullable=True),
        Column("is_current", Boolean, nullable=False),
        Column("run_id", Integer, nullable=False),
        Index(f"ix_{table_name}_key", "target", "snapshot_key"),
        Index(f"ix_{table_name}_current", "target", "is_current"),
        schema=schema,
    )
    runs = Table(
        runs_table_name,
        metadata,
        Column("target", String(256), primary_key=True),
        Column("run_id", Integer, nullable=False),
        Column("run_timestamp", DateTime(timezone=True), nullable=True),
        schema=schema,
    )
    return versions, runs


def _json_safe(value: Any) -> Any:
    """Render a source value for the JSON ``row_data`` column."""
    if is_missing(value):
        return None
    if isinstance(value, np.generic):
        return _json_safe(value.item())
    if isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset, np.ndarray)):
        return [_json_safe(v) for v in value]
    return str(value)


def _chunks(items: Sequence[Any]) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), _CHUNK_SIZE):
        yield items[start:start + _CHUNK_SIZE]


class _SQLTransaction(StoreTransaction):
    """Writes issued on the connection of one open transaction."""

    def __init__(self, store: "SQLSnapshotTableStore", conn: Connection, run_id: int):
        super().__init__(run_id)
        self.store = store
        self.conn = conn
        self.versions = store.versions_table

    def _current_rows(self, keys: Sequence[str]) -> Dict[str, Any]:
        found: Dict[str, Any] = {}
        for chunk in _chunks(list(keys)):
            result = self.conn.execute(
                select(
                    self.versions.c.snapshot_key,
                    self.versions.c.version_id,
                    self.versions.c.valid_from,
                ).where(
                    and_(
                        self.versions.c.target == self.store.target,
                        self.versions.c.is_current.is_(True),
                        self.versions.c.snapshot_key.in_(chunk),
                    )
                )
            )
            for row in result:
                found[row.snapshot_key] = row
        return found

    @traced(
        span_name="snapflow.store.sql.append_versions",
        attribute_getter=lambda self, rows: self.store._span_attributes("append_versions", rows=len(rows)),
    )
    def append_versions(self, rows: Sequence[SnapshotRow]) -> int:
        if not rows:
            return 0
        keys = [canonical_key(row.key) for row in rows]
        if len(set(keys)) != len(keys) or self._current_rows(keys):
            raise integrity_error(
                "Append would create a second current version for a key",
                target=self.store.target,
                error_code=ErrorCode.DUPLICATE_CURRENT,
            )

        records = [
            {
                "target": self.store.target,
                "version_id": row.version_id,
                "snapshot_key": key,
                "fingerprint": row.fingerprint,
                "row_data": _json_safe(row.data),
                "valid_from": row.valid_from,
                "valid_to": row.valid_to,
                "is_current": row.is_current,
                "run_id": self.run_id,
            }
            for key, row in zip(keys, rows)
        ]
        self.conn.execute(self.versions.insert(), records)
        return len(records)

    def _close_current(self, version_ids: Sequence[str], close_timestamp: datetime) -> int:
        closed = 0
        for chunk in _chunks(list(version_ids)):
            result = self.conn.execute(
                self.versions.update()
                .where(
                    and_(
                        self.versions.c.target == self.store.target,
                        self.versions.c.is_current.is_(True),
                        self.versions.c.version_id.in_(chunk),
                    )
                )
                .values(valid_to=close_timestamp, is_current=False)
            )
            closed += result.rowcount
        return closed

    def _check_interval(self, current: Dict[str, Any], close_timestamp: datetime) -> None:
        for key, row in current.items():
            if ensure_utc(row.valid_from) >= close_timestamp:
                raise integrity_error(
                    f"Cannot close version {row.version_id} of key {parse_canonical_key(key)} "
                    f"at {close_timestamp.isoformat()}: it opened at {ensure_utc(row.valid_from).isoformat()}",
                    target=self.store.target,
                )

    @traced(
        span_name="snapflow.store.sql.close_versions",
        attribute_getter=lambda self, closes, close_timestamp: self.store._span_attributes(
            "close_versions", rows=len(closes)
        ),
    )
    def close_versions(self, closes: Sequence[VersionClose], close_timestamp: datetime) -> int:
        if not closes:
            return 0
        close_timestamp = ensure_utc(close_timestamp)
        current = self._current_rows([canonical_key(c.key) for c in closes])
        for close in closes:
            row = current.get(canonical_key(close.key))
            if row is None or row.version_id != close.version_id:
                raise integrity_error(
                    f"Version {close.version_id} of key {close.key} is not current",
                    target=self.store.target,
                    error_code=ErrorCode.VERSION_NOT_CURRENT,
                )
        self._check_interval(current, close_timestamp)

        closed = self._close_current([c.version_id for c in closes], close_timestamp)
        if closed != len(closes):
            raise integrity_error(
                f"Closed {closed} of {len(closes)} versions",
                target=self.store.target,
                error_code=ErrorCode.VERSION_NOT_CURRENT,
            )
        return closed

    @traced(
        span_name="snapflow.store.sql.hard_invalidate",
        attribute_getter=lambda self, keys, close_timestamp: self.store._span_attributes(
            "hard_invalidate", rows=len(keys)
        ),
    )
    def hard_invalidate(self, keys: Sequence[SnapshotKey], close_timestamp: datetime) -> int:
        if not keys:
            return 0
        close_timestamp = ensure_utc(close_timestamp)
        current = self._current_rows([canonical_key(key) for key in keys])
        self._check_interval(current, close_timestamp)
        return self._close_current([row.version_id for row in current.values()], close_timestamp)


class SQLSnapshotTableStore(SnapshotTableStore):
    """Snapshot table in any SQLAlchemy-supported database.

    Args:
        engine: SQLAlchemy engine to use. The store does not dispose it.
        target: Snapshot target whose versions this store reads and writes.
        table_name: Versions table name.
        runs_table_name: Runs table name.
        schema: Optional database schema for both tables.
        create_tables: Create missing tables on first use.

    Example:
        >>> engine = create_engine("sqlite://")
        >>> store = SQLSnapshotTableStore(engine, target="customers")
        >>> store.current_versions()
        []
    """

    def __init__(
        self,
        engine: Engine,
        target: str = "snapshot",
        table_name: str = "snapshot_versions",
        runs_table_name: str = "snapshot_runs",
        schema: Optional[str] = None,
        create_tables: bool = True,
    ):
        super().__init__(target)
        self.engine = engine
        self.metadata = MetaData()
        self.versions_table, self.runs_table = build_tables(
            self.metadata, table_name, runs_table_name, schema
        )
        self._create_tables = create_tables
        self._tables_ready = False

    @classmethod
    def from_settings(cls, settings: StoreSettings, target: str) -> "SQLSnapshotTableStore":
        """Build a store and its engine from ``STORE_*`` settings."""
        if settings.database_url is None:
            raise configuration_error(
                "STORE_DATABASE_URL is required for the sql backend",
                config_key="database_url",
                error_code=ErrorCode.CONFIG_MISSING,
            )

        url = make_url(settings.database_url.get_secret_value())
        engine_kwargs: Dict[str, Any] = {"echo": settings.echo, "pool_pre_ping": True}
        if url.get_backend_name() != "sqlite":
            engine_kwargs.update(
                pool_size=settings.pool_size,
                max_overflow=settings.max_overflow,
                pool_timeout=settings.pool_timeout,
            )

        try:
            engine = create_engine(url, **engine_kwargs)
        except Exception as exc:
            raise connection_error(
                f"Failed to create engine for {url.get_backend_name()}",
                service=url.get_backend_name(),
                host=url.host,
                cause=exc,
            ) from exc

        logger.info(
            "Created snapshot store engine",
            extra={"db.platform": url.get_backend_name(), "target": target},
        )
        return cls(
            engine,
            target=target,
            table_name=settings.table_name,
            runs_table_name=settings.runs_table_name,
            schema=settings.schema_name,
            create_tables=settings.create_tables,
        )

    def _span_attributes(self, operation: str, rows: Optional[int] = None) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "db.system": self.engine.dialect.name,
            "db.operation": operation,
            "db.sql.table": self.versions_table.name,
            "snapflow.snapshot.target": self.target,
        }
        if rows is not None:
            attributes["snapflow.store.rows"] = rows
        return attributes

    @contextmanager
    def _db_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SnapflowError:
            raise
        except sa_exc.OperationalError as exc:
            raise connection_error(
                f"Snapshot store {operation} failed for '{self.target}'",
                service=self.engine.dialect.name,
                cause=exc,
            ) from exc
        except sa_exc.SQLAlchemyError as exc:
            raise integrity_error(
                f"Snapshot store {operation} failed for '{self.target}'",
                target=self.target,
                error_code=ErrorCode.TRANSACTION_FAILED,
                cause=exc,
            ) from exc

    def _ensure_tables(self) -> None:
        if self._tables_ready or not self._create_tables:
            return
        with self._db_errors("table creation"):
            self.metadata.create_all(self.engine, checkfirst=True)
        self._tables_ready = True

    def _to_row(self, record: Any) -> SnapshotRow:
        return SnapshotRow(
            key=parse_canonical_key(record.snapshot_key),
            data=dict(record.row_data or {}),
            fingerprint=record.fingerprint,
            version_id=record.version_id,
            valid_from=record.valid_from,
            valid_to=record.valid_to,
            run_id=record.run_id,
        )

    # Reads

    @traced(
        span_name="snapflow.store.sql.current_index",
        attribute_getter=lambda self: self._span_attributes("current_index"),
    )
    def current_index(self) -> CurrentSnapshotIndex:
        self._ensure_tables()
        start_time = time.time()
        with self._db_errors("read"), self.engine.connect() as conn:
            records = conn.execute(
                select(self.versions_table).where(self.versions_table.c.target == self.target)
            ).all()
            run = conn.execute(
                select(self.runs_table.c.run_id, self.runs_table.c.run_timestamp).where(
                    self.runs_table.c.target == self.target
                )
            ).first()

        current: Dict[SnapshotKey, SnapshotRow] = {}
        seen = set()
        for record in records:
            row = self._to_row(record)
            seen.add(row.key)
            if row.is_current:
                current[row.key] = row

        logger.info(
            "Current snapshot index read",
            extra={
                "target": self.target,
                "current_rows": len(current),
                "duration.seconds": f"{time.time() - start_time:.6f}",
            },
        )
        return CurrentSnapshotIndex(
            current=current,
            retired_keys=frozenset(seen - set(current)),
            run_id=run.run_id if run else 0,
            last_run_timestamp=ensure_utc(run.run_timestamp) if run else None,
        )

    @traced(
        span_name="snapflow.store.sql.history",
        attribute_getter=lambda self, key=None: self._span_attributes("history"),
    )
    def history(self, key: Optional[SnapshotKey] = None) -> List[SnapshotRow]:
        self._ensure_tables()
        query = select(self.versions_table).where(self.versions_table.c.target == self.target)
        if key is not None:
            query = query.where(self.versions_table.c.snapshot_key == canonical_key(tuple(key)))
        query = query.order_by(self.versions_table.c.snapshot_key, self.versions_table.c.valid_from)

        with self._db_errors("read"), self.engine.connect() as conn:
            records = conn.execute(query).all()

        rows = [self._to_row(record) for record in records]
        return sorted(rows, key=lambda row: (_sort_key(row.key), row.valid_from))

    # Writes

    def _advance_run(
        self,
        conn: Connection,
        expected_run_id: Optional[int],
        run_timestamp: Optional[datetime],
    ) -> int:
        runs = self.runs_table
        existing = conn.execute(
            select(runs.c.run_id, runs.c.run_timestamp).where(runs.c.target == self.target)
        ).first()
        current_run_id = existing.run_id if existing else 0

        if expected_run_id is not None and expected_run_id != current_run_id:
            raise integrity_error(
                f"Snapshot '{self.target}' advanced to run {current_run_id} "
                f"while a run planned against {expected_run_id} was applying",
                target=self.target,
                error_code=ErrorCode.CONCURRENT_RUN,
            )

        new_run_id = current_run_id + 1
        if existing is None:
            try:
                conn.execute(
                    runs.insert().values(
                        target=self.target,
                        run_id=new_run_id,
                        run_timestamp=ensure_utc(run_timestamp),
                    )
                )
            except sa_exc.IntegrityError as exc:
                raise integrity_error(
                    f"Another run of '{self.target}' committed first",
                    target=self.target,
                    error_code=ErrorCode.CONCURRENT_RUN,
                    cause=exc,
                ) from exc
            return new_run_id

        values: Dict[str, Any] = {"run_id": new_run_id}
        if run_timestamp is not None:
            values["run_timestamp"] = ensure_utc(run_timestamp)
        result = conn.execute(
            runs.update()
            .where(and_(runs.c.target == self.target, runs.c.run_id == current_run_id))
            .values(**values)
        )
        if result.rowcount != 1:
            raise integrity_error(
                f"Another run of '{self.target}' committed first",
                target=self.target,
                error_code=ErrorCode.CONCURRENT_RUN,
            )
        return new_run_id

    @contextmanager
    def transaction(
        self,
        expected_run_id: Optional[int] = None,
        run_timestamp: Optional[datetime] = None,
    ) -> Iterator[StoreTransaction]:
        self._ensure_tables()
        start_time = time.time()
        with self._db_errors("transaction"):
            with self.engine.begin() as conn:
                run_id = self._advance_run(conn, expected_run_id, run_timestamp)
                yield _SQLTransaction(self, conn, run_id)

        logger.info(
            "Snapshot transaction committed",
            extra={
                "target": self.target,
                "store_run_id": run_id,
                "duration.seconds": f"{time.time() - start_time:.6f}",
            },
        )
