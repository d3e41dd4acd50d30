"""Tests for the engine_stage decorator."""

import logging
from unittest.mock import patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from voice_trace.common.decorators import engine_stage


@pytest.fixture
def exporter():
    """Route stage spans to an in-memory exporter."""
    memory = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(memory))
    with patch("voice_trace.common.decorators.tracer", provider.get_tracer(__name__)):
        yield memory


@engine_stage("double")
def _double(values: list[int]) -> list[int]:
    return [v * 2 for v in values]


@engine_stage("explode")
def _explode(values: list[int]) -> list[int]:
    raise ValueError("bad input")


@engine_stage("double_async")
async def _double_async(values: list[int]) -> list[int]:
    return [v * 2 for v in values]


class TestEngineStage:
    """Tests for engine_stage."""

    def test_sync_stage_span(self, exporter: InMemorySpanExporter) -> None:
        assert _double([1, 2, 3]) == [2, 4, 6]

        (span,) = exporter.get_finished_spans()
        assert span.name == "voice_trace.double"
        assert span.attributes["voice_trace.input_size"] == 3
        assert span.attributes["voice_trace.output_size"] == 3

    def test_stage_logs(
        self, exporter: InMemorySpanExporter, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="voice_trace.common.decorators"):
            _double([1])
        assert "Stage Start: 'double'" in caplog.text
        assert "Stage Done: 'double'" in caplog.text

    def test_failure_is_logged_and_reraised(
        self, exporter: InMemorySpanExporter, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR), pytest.raises(ValueError, match="bad input"):
            _explode([1])

        assert "Stage Failed: 'explode'" in caplog.text
        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_async_stage(self, exporter: InMemorySpanExporter) -> None:
        assert await _double_async([5]) == [10]
        (span,) = exporter.get_finished_spans()
        assert span.name == "voice_trace.double_async"

    def test_preserves_metadata(self) -> None:
        assert _double.__name__ == "_double"
