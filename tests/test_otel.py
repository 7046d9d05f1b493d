"""
Tests for OTel span and span event helpers.
"""

from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from winfeature.otel import (
    emit_classified,
    emit_phase_changed,
    emit_retry_attempt,
    mark_run_result,
    provision_span,
)


@pytest.fixture
def mock_span():
    """Patch the current span with a recording mock."""
    span = MagicMock()
    span.is_recording.return_value = True
    with patch("winfeature.otel.otel_trace") as mock_trace:
        mock_trace.get_current_span.return_value = span
        yield span


@pytest.fixture
def exporter():
    """Route the module tracer to an in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    with patch("winfeature.otel._tracer", provider.get_tracer("winfeature")):
        yield exporter


class TestSpanEvents:
    def test_phase_changed(self, mock_span):
        emit_phase_changed("installing", "restarting", "reboot_pending")

        mock_span.add_event.assert_called_once_with(
            name="winfeature.phase.changed",
            attributes={
                "winfeature.from_phase": "installing",
                "winfeature.to_phase": "restarting",
                "winfeature.outcome": "reboot_pending",
            },
        )

    def test_phase_changed_without_outcome(self, mock_span):
        emit_phase_changed("uploading", "installing")

        attrs = mock_span.add_event.call_args.kwargs["attributes"]
        assert "winfeature.outcome" not in attrs

    def test_classified(self, mock_span):
        emit_classified("cmd", 101, "reboot_pending")

        attrs = mock_span.add_event.call_args.kwargs["attributes"]
        assert mock_span.add_event.call_args.kwargs["name"] == "winfeature.remote.classified"
        assert attrs["winfeature.exit_status"] == 101
        assert attrs["winfeature.outcome"] == "reboot_pending"

    def test_retry_attempt(self, mock_span):
        emit_retry_attempt("upload", 2, ConnectionError("refused"))

        attrs = mock_span.add_event.call_args.kwargs["attributes"]
        assert attrs == {
            "winfeature.operation": "upload",
            "winfeature.attempt": 2,
            "winfeature.error": "refused",
        }

    def test_not_recording_is_noop(self, mock_span):
        mock_span.is_recording.return_value = False
        emit_phase_changed("uploading", "installing")
        mock_span.add_event.assert_not_called()


class TestProvisionSpan:
    def test_span_attributes_and_result(self, exporter):
        with provision_span("run-1", ["IIS-WebServer"], []) as span:
            emit_phase_changed("uploading", "installing")
            mark_run_result(span, restarts=1, commands_run=5)

        (finished,) = exporter.get_finished_spans()
        assert finished.name == "winfeature.provision"
        assert finished.attributes["winfeature.run_id"] == "run-1"
        assert list(finished.attributes["winfeature.features"]) == ["IIS-WebServer"]
        assert finished.attributes["winfeature.restarts"] == 1
        assert finished.status.status_code == StatusCode.OK
        assert [e.name for e in finished.events] == ["winfeature.phase.changed"]

    def test_exception_marks_span_errored(self, exporter):
        with pytest.raises(RuntimeError):
            with provision_span("run-2", [], ["Cap"]):
                raise RuntimeError("boom")

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR
        assert any(e.name == "exception" for e in finished.events)
