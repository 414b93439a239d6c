"""Metrics collection for snapshot runs.

This module provides the collector that exports per-run change counts and
durations to OpenTelemetry. Without a configured meter provider the
instruments are no-ops, while the collector still keeps an in-process
record of each run for inspection.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from snapflow.__version__ import __version__
from snapflow.logging import get_logger
from snapflow.telemetry import get_meter
from snapflow.utils.datetime import get_current_timestamp

if TYPE_CHECKING:
    from snapflow.snapshot.types import ReconcileResult


@dataclass
class SnapshotRunMetrics:
    """Container for the metrics of one reconciliation run.

    Attributes:
        target: Snapshot target name
        inserted: New keys opened
        updated: Keys whose current version was superseded
        invalidated: Keys closed without successor
        reinserted: Previously invalidated keys opened again
        unchanged: Keys left untouched
        row_errors: Rows reported as errors
        duration_seconds: Wall time of the run
        success: Whether the run committed (or had nothing to commit)
        error_code: Error code when the run failed
        timestamp: When the metrics were recorded
    """

    target: str
    inserted: int = 0
    updated: int = 0
    invalidated: int = 0
    reinserted: int = 0
    unchanged: int = 0
    row_errors: int = 0
    duration_seconds: float = 0.0
    success: bool = True
    error_code: Optional[str] = None
    timestamp: datetime = field(default_factory=get_current_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


class SnapshotMetricsCollector:
    """Collector for snapshot run metrics.

    Attributes:
        meter: OpenTelemetry meter
        runs: Metrics of every run recorded by this collector
    """

    def __init__(self, meter_name: str = "snapflow"):
        self.logger = get_logger(__name__)
        self.runs: List[SnapshotRunMetrics] = []
        self.meter = get_meter(meter_name, __version__)
        self._setup_instruments()

    def _setup_instruments(self) -> None:
        """Setup OpenTelemetry instruments."""
        self.runs_counter = self.meter.create_counter(
            "snapshot_runs_total",
            description="Total number of snapshot runs",
            unit="runs"
        )

        self.change_counters = {
            change: self.meter.create_counter(
                f"snapshot_rows_{change}_total",
                description=f"Total number of {change} snapshot keys",
                unit="rows"
            )
            for change in ("inserted", "updated", "invalidated", "reinserted")
        }

        self.error_counter = self.meter.create_counter(
            "snapshot_row_errors_total",
            description="Total number of rejected source rows",
            unit="errors"
        )

        self.duration_histogram = self.meter.create_histogram(
            "snapshot_run_duration_seconds",
            description="Duration of snapshot runs",
            unit="seconds"
        )

    def record_run(
        self,
        result: "ReconcileResult",
        duration_seconds: float,
    ) -> SnapshotRunMetrics:
        """Record a completed reconciliation.

        Args:
            result: Result returned by the reconciler
            duration_seconds: Wall time of the run

        Returns:
            The recorded metrics
        """
        metrics = SnapshotRunMetrics(
            target=result.target,
            inserted=result.inserted,
            updated=result.updated,
            invalidated=result.invalidated,
            reinserted=result.reinserted,
            unchanged=result.unchanged,
            row_errors=len(result.errors),
            duration_seconds=duration_seconds,
        )
        self._export(metrics)
        return metrics

    def record_failure(
        self,
        target: str,
        duration_seconds: float,
        error_code: Optional[str] = None,
    ) -> SnapshotRunMetrics:
        """Record a run that raised before or during apply."""
        metrics = SnapshotRunMetrics(
            target=target,
            duration_seconds=duration_seconds,
            success=False,
            error_code=error_code,
        )
        self._export(metrics)
        return metrics

    def _export(self, metrics: SnapshotRunMetrics) -> None:
        self.runs.append(metrics)

        attributes = {
            "target": metrics.target,
            "success": str(metrics.success).lower(),
        }

        self.runs_counter.add(1, attributes)
        for change, counter in self.change_counters.items():
            value = getattr(metrics, change)
            if value:
                counter.add(value, attributes)
        if metrics.row_errors:
            self.error_counter.add(metrics.row_errors, attributes)
        self.duration_histogram.record(metrics.duration_seconds, attributes)

        self.logger.info(
            "snapshot.run_recorded",
            extra=metrics.to_dict()
        )
