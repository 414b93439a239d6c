"""Caller-side execution of one snapshot run.

The reconciler never retries; ``SnapshotJob`` is the caller that does.
It opens a run-scoped logging and tracing context, pulls the extract,
reconciles it with a run timestamp fixed across attempts, retries
retryable failures with exponential backoff and records run metrics.
"""

import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional, Type, Union

from snapflow.common.exceptions import SnapflowError
from snapflow.logging import get_logger
from snapflow.monitoring import SnapshotMetricsCollector
from snapflow.observability import resolve_run_context, run_scope
from snapflow.protocols import SourceExtractProvider
from snapflow.settings import get_settings
from snapflow.snapshot.definitions import SnapshotDefinition
from snapflow.snapshot.reconciler import Reconciler
from snapflow.snapshot.store import SnapshotTableStore, create_store
from snapflow.snapshot.types import ReconcileResult, SnapshotConfig
from snapflow.utils.datetime import ensure_utc, get_current_timestamp
from snapflow.utils.decorators import retry_with_backoff

if TYPE_CHECKING:
    from snapflow.settings import _Settings

logger = get_logger(__name__)


class SnapshotJob:
    """Runs a snapshot target end to end.

    Args:
        config: Reconciler configuration.
        provider: Source of the full extract.
        store: Snapshot table store of the target.
        settings: Application settings; the global settings when omitted.
        metrics: Metrics collector; a new one when omitted.
        sleep: Wait function between retries.

    Example:
        >>> job = SnapshotJob(config, IterableExtractProvider(rows), store)
        >>> result = job.run()
        >>> result.inserted
        3
    """

    def __init__(
        self,
        config: SnapshotConfig,
        provider: SourceExtractProvider,
        store: SnapshotTableStore,
        settings: Optional["_Settings"] = None,
        metrics: Optional[SnapshotMetricsCollector] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.provider = provider
        self.store = store
        self.settings = settings or get_settings()
        self.metrics = metrics or SnapshotMetricsCollector()
        self._sleep = sleep
        self.reconciler = Reconciler(
            config,
            store,
            max_workers=self.settings.max_workers,
            parallel_threshold=self.settings.snapshot.parallel_threshold,
        )

    @classmethod
    def from_definition(
        cls,
        definition: Union[SnapshotDefinition, Type[SnapshotDefinition]],
        store: Optional[SnapshotTableStore] = None,
        settings: Optional["_Settings"] = None,
        metrics: Optional[SnapshotMetricsCollector] = None,
    ) -> "SnapshotJob":
        """Build a job from a ``@snapshot_metadata`` decorated definition.

        The store defaults to the one configured by ``STORE_*`` settings.
        """
        if isinstance(definition, type):
            definition = definition()
        config = definition.get_config()
        settings = settings or get_settings()
        if store is None:
            store = create_store(config.target, settings.store)
        return cls(config, definition, store, settings=settings, metrics=metrics)

    def _attempt(self, run_timestamp: datetime) -> ReconcileResult:
        rows = list(self.provider.extract())
        logger.debug("Source extract materialized", extra={"target": self.config.target, "rows": len(rows)})
        return self.reconciler.reconcile(rows, run_timestamp=run_timestamp)

    def run(
        self,
        run_timestamp: Optional[datetime] = None,
        context: Optional[Any] = None,
    ) -> ReconcileResult:
        """Execute one snapshot run.

        Args:
            run_timestamp: Timestamp for the run; the current UTC time when
                omitted. Retries reuse the same timestamp.
            context: ``RunContext``, mapping or run id string for log and
                trace correlation.

        Returns:
            The reconciliation result.

        Raises:
            SnapflowError: When the run fails, after retries for retryable
                errors are exhausted.
        """
        ctx = resolve_run_context(context, target=self.config.target)
        run_timestamp = ensure_utc(run_timestamp) if run_timestamp else get_current_timestamp()
        attempt = retry_with_backoff(
            max_retries=self.settings.max_retries,
            initial_delay=self.settings.retry_delay_seconds,
            retry_on=(SnapflowError,),
            retry_condition=lambda exc: exc.is_retryable,
            sleep=self._sleep,
        )(self._attempt)

        start_time = time.time()
        with run_scope(ctx, operation="snapflow.snapshot.run") as telemetry:
            logger.info(
                "snapshot.run_started",
                extra={**telemetry, "run_timestamp": run_timestamp.isoformat()},
            )
            try:
                result = attempt(run_timestamp)
            except SnapflowError as exc:
                self.metrics.record_failure(
                    self.config.target,
                    time.time() - start_time,
                    error_code=exc.error_code.value,
                )
                raise
            except Exception:
                self.metrics.record_failure(self.config.target, time.time() - start_time)
                raise

            self.metrics.record_run(result, time.time() - start_time)
            return result
