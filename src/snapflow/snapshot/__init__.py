"""SCD Type-2 snapshot engine.

The pieces, bottom up: ``RowHasher`` fingerprints source rows, a
``SnapshotTableStore`` keeps the versioned history, the ``Reconciler``
turns a full extract into one atomic set of closes and appends, and
``SnapshotJob`` runs it with retries, logging and metrics.
"""

from .decorators import snapshot_metadata
from .definitions import SnapshotDefinition, SnapshotMetadata
from .hasher import RowHasher, normalize_value
from .job import SnapshotJob
from .providers import DataFrameExtractProvider, IterableExtractProvider, SQLQueryExtractProvider
from .reconciler import Reconciler
from .store import (
    InMemorySnapshotTableStore,
    SnapshotTableStore,
    SQLSnapshotTableStore,
    StoreTransaction,
    create_store,
)
from .types import (
    CurrentSnapshotIndex,
    ReconcilePlan,
    ReconcileResult,
    RowError,
    SnapshotConfig,
    SnapshotRow,
    VersionClose,
)

__all__ = [
    "snapshot_metadata",
    "SnapshotDefinition",
    "SnapshotMetadata",
    "RowHasher",
    "normalize_value",
    "SnapshotJob",
    "DataFrameExtractProvider",
    "IterableExtractProvider",
    "SQLQueryExtractProvider",
    "Reconciler",
    "InMemorySnapshotTableStore",
    "SnapshotTableStore",
    "SQLSnapshotTableStore",
    "StoreTransaction",
    "create_store",
    "CurrentSnapshotIndex",
    "ReconcilePlan",
    "ReconcileResult",
    "RowError",
    "SnapshotConfig",
    "SnapshotRow",
    "VersionClose",
]
