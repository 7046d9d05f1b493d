"""
OTel span and span event helpers for provisioning runs.

A run executes inside a ``winfeature.provision`` span; phase transitions,
classifications and retries become events on whichever span is current.
Without a configured TracerProvider these calls are no-ops.

Usage::

    from winfeature.otel import emit_phase_changed, provision_span

    with provision_span(run_id, features, capabilities):
        emit_phase_changed("uploading", "installing")
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

from opentelemetry import trace as otel_trace
from opentelemetry.trace import Span, Status, StatusCode

_tracer = otel_trace.get_tracer("winfeature")


def _add_span_event(name: str, attributes: dict[str, str | int | float | bool]) -> None:
    """Add an event to the current OTel span if it is recording."""
    span = otel_trace.get_current_span()
    if span and span.is_recording():
        span.add_event(name=name, attributes=attributes)


@contextmanager
def provision_span(
    run_id: str,
    features: Sequence[str],
    capabilities: Sequence[str],
) -> Iterator[Span]:
    """Open the span that covers one provisioning run.

    Exceptions escaping the block are recorded and mark the span as errored.
    """
    with _tracer.start_as_current_span(
        "winfeature.provision",
        attributes={
            "winfeature.run_id": run_id,
            "winfeature.features": list(features),
            "winfeature.capabilities": list(capabilities),
        },
        record_exception=True,
        set_status_on_exception=True,
    ) as span:
        yield span


def emit_phase_changed(
    from_phase: str,
    to_phase: str,
    outcome: Optional[str] = None,
) -> None:
    """Event name: ``winfeature.phase.changed``"""
    attrs: dict[str, str | int | float | bool] = {
        "winfeature.from_phase": from_phase,
        "winfeature.to_phase": to_phase,
    }
    if outcome:
        attrs["winfeature.outcome"] = outcome
    _add_span_event("winfeature.phase.changed", attrs)


def emit_classified(command: str, exit_status: int, outcome: str) -> None:
    """Event name: ``winfeature.remote.classified``"""
    _add_span_event(
        "winfeature.remote.classified",
        {
            "winfeature.command": command,
            "winfeature.exit_status": exit_status,
            "winfeature.outcome": outcome,
        },
    )


def emit_retry_attempt(operation: str, attempt: int, error: BaseException) -> None:
    """Event name: ``winfeature.retry.attempt``"""
    _add_span_event(
        "winfeature.retry.attempt",
        {
            "winfeature.operation": operation,
            "winfeature.attempt": attempt,
            "winfeature.error": str(error),
        },
    )


def mark_run_result(span: Span, restarts: int, commands_run: int) -> None:
    """Record the final counters on the run span."""
    if not span.is_recording():
        return
    span.set_attribute("winfeature.restarts", restarts)
    span.set_attribute("winfeature.commands_run", commands_run)
    span.set_status(Status(StatusCode.OK))
