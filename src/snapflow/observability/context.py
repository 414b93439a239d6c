"""Shared observability context utilities."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional

from opentelemetry.trace import Status, StatusCode
from pydantic import Field

from snapflow.logging import get_logger
from snapflow.logging.filters import clear_run_context, set_run_context
from snapflow.telemetry import get_tracer
from snapflow.types.base import SnapflowBaseModel


class RunContext(SnapflowBaseModel):
    """Observability context propagated across one snapshot run."""

    run_id: str
    target: Optional[str] = None
    correlation_id: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def generate(cls, **kwargs: Any) -> "RunContext":
        """Generate a new context with a unique run id."""
        return cls(run_id=str(uuid.uuid4()), **kwargs)

    def to_telemetry_dict(self) -> Dict[str, str]:
        payload: Dict[str, str] = {"run_id": self.run_id}
        if self.target:
            payload["snapshot_target"] = self.target
        if self.correlation_id:
            payload["correlation_id"] = self.correlation_id
        for key, value in (self.attributes or {}).items():
            if value is not None:
                payload[f"ctx.{key}"] = str(value)
        return payload


@contextmanager
def run_scope(
    ctx: RunContext,
    *,
    operation: Optional[str] = None,
) -> Iterator[Dict[str, str]]:
    """Apply logging + tracing scope for a snapshot run.

    Yields the telemetry payload so callers can attach it to their own
    log records.
    """
    telemetry = ctx.to_telemetry_dict()
    set_run_context(run_id=ctx.run_id, target=ctx.target)

    tracer = get_tracer("snapflow")
    span_name = operation or "snapflow.run"

    with tracer.start_as_current_span(span_name) as span:
        for key, value in telemetry.items():
            span.set_attribute(f"snapflow.{key}", value)

        try:
            yield telemetry
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            get_logger(__name__).error(
                "Snapshot run failed",
                extra={**telemetry, "operation.name": span_name},
                exc_info=True,
            )
            raise
        finally:
            clear_run_context()


def resolve_run_context(ctx: Optional[Any], target: Optional[str] = None) -> RunContext:
    """Normalize inbound context data into a RunContext."""
    if isinstance(ctx, RunContext):
        if target and not ctx.target:
            ctx.target = target
        return ctx

    if ctx is None:
        return RunContext.generate(target=target)

    if isinstance(ctx, str):
        return RunContext(run_id=ctx, target=target)

    data: Dict[str, Any] = dict(ctx) if isinstance(ctx, Mapping) else {}

    attributes = data.get("attributes") or {}
    if not isinstance(attributes, dict):
        attributes = {"value": str(attributes)}

    return RunContext(
        run_id=str(data.get("run_id") or uuid.uuid4()),
        target=data.get("target") or target,
        correlation_id=data.get("correlation_id"),
        attributes=attributes,
    )


def sanitize_extras(
    extra: Optional[Dict[str, Any]],
    *,
    prefix: Optional[str] = None,
) -> Dict[str, str]:
    """Sanitize arbitrary telemetry extras into a JSON-safe dict."""
    if not extra:
        return {}

    result: Dict[str, str] = {}
    for key, value in extra.items():
        if value is None:
            continue
        field = f"{prefix}{key}" if prefix else str(key)
        result[field] = str(value)
    return result
