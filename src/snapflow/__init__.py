from snapflow.__version__ import __version__
from snapflow.snapshot import (
    DataFrameExtractProvider,
    InMemorySnapshotTableStore,
    IterableExtractProvider,
    Reconciler,
    ReconcileResult,
    RowHasher,
    SnapshotConfig,
    SnapshotDefinition,
    SnapshotJob,
    SnapshotRow,
    SnapshotTableStore,
    SQLQueryExtractProvider,
    SQLSnapshotTableStore,
    create_store,
    snapshot_metadata,
)

from snapflow.api import run_snapshot

from snapflow.common.exceptions import (
    ConfigurationError,
    ConnectivityError,
    ErrorCode,
    IntegrityError,
    SnapflowError,
)

# Utils (public API)
from snapflow.utils import (
    get_current_timestamp,
    retry_with_backoff,
)


__all__ = [
    "__version__",

    "SnapshotDefinition",
    "snapshot_metadata",
    "run_snapshot",

    "SnapshotConfig",
    "SnapshotRow",
    "ReconcileResult",
    "RowHasher",
    "Reconciler",
    "SnapshotJob",

    "SnapshotTableStore",
    "InMemorySnapshotTableStore",
    "SQLSnapshotTableStore",
    "create_store",

    "IterableExtractProvider",
    "DataFrameExtractProvider",
    "SQLQueryExtractProvider",

    # Exceptions (public API)
    "SnapflowError",
    "ConfigurationError",
    "ConnectivityError",
    "IntegrityError",
    "ErrorCode",

    "get_current_timestamp",
    "retry_with_backoff",
]
