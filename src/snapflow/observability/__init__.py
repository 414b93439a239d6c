"""Observability utilities for SnapFlow."""

from .context import RunContext, resolve_run_context, run_scope, sanitize_extras

__all__ = [
    "RunContext",
    "resolve_run_context",
    "run_scope",
    "sanitize_extras",
]
