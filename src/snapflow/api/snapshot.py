from datetime import datetime
from typing import Any, Optional, Type, Union

from snapflow.snapshot import (
    ReconcileResult,
    SnapshotDefinition,
    SnapshotJob,
    SnapshotTableStore,
)


def run_snapshot(
    definition: Union[SnapshotDefinition, Type[SnapshotDefinition]],
    *,
    store: Optional[SnapshotTableStore] = None,
    run_timestamp: Optional[datetime] = None,
    ctx: Optional[Any] = None,
) -> ReconcileResult:
    """Run one snapshot of a ``@snapshot_metadata`` decorated definition.

    The store defaults to the backend configured by ``STORE_*`` settings.
    """
    job = SnapshotJob.from_definition(definition, store=store)
    return job.run(run_timestamp=run_timestamp, context=ctx)
