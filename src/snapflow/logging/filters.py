"""Logging filters for context injection.

This module provides filters that inject context variables into log records,
enabling correlation of logs across a snapshot run.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any, Dict, Optional

from snapflow.__version__ import __version__

run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
target_var: ContextVar[Optional[str]] = ContextVar("snapshot_target", default=None)

_static_context: Dict[str, Any] = {}


class ContextFilter(logging.Filter):
    """Logging filter that adds context variables to log records.

    Run-scoped values (run id, snapshot target) come from context variables;
    process-wide values (environment, extra static fields) come from
    ``set_logging_context``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context variables to the log record.

        Args:
            record: Log record to enhance

        Returns:
            Always True (doesn't filter out any records)
        """
        setattr(record, "run_id", run_id_var.get())
        setattr(record, "snapshot_target", target_var.get())
        setattr(record, "sdk_name", "snapflow")
        setattr(record, "core_version", __version__)

        for key, value in _static_context.items():
            if not hasattr(record, key):
                setattr(record, key, value)

        return True


def set_logging_context(
    environment: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """Replace the static fields added to every record."""
    _static_context.clear()
    if environment is not None:
        _static_context["environment"] = environment
    if extra:
        _static_context.update(extra)


def set_run_context(
    run_id: Optional[str] = None,
    target: Optional[str] = None,
) -> None:
    """Set run context variables."""
    if run_id is not None:
        run_id_var.set(run_id)
    if target is not None:
        target_var.set(target)


def clear_run_context() -> None:
    """Clear all run context variables."""
    run_id_var.set(None)
    target_var.set(None)
