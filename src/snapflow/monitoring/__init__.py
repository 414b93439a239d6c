"""Run metrics for SnapFlow."""

from snapflow.monitoring.metrics import SnapshotMetricsCollector, SnapshotRunMetrics

__all__ = ["SnapshotMetricsCollector", "SnapshotRunMetrics"]
