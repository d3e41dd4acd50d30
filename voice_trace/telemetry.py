"""Logging and OpenTelemetry setup for the voice trace engine."""

import json
import logging
import os
import sys
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class StageLoggingFilter(logging.Filter):
    """Filter that marks engine stage messages for better visibility."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records to add stage markers."""
        if not record.name.startswith("voice_trace"):
            return True

        msg = record.getMessage()
        if not isinstance(record.msg, str):
            return True

        if "Stage Start" in msg and "▶" not in msg:
            record.msg = f"▶ {record.msg}"
        elif "Stage Done" in msg and "✅" not in msg:
            record.msg = f"✅ {record.msg}"
        elif "Stage Failed" in msg and "❌" not in msg:
            record.msg = f"❌ {record.msg}"
        elif "Fallback" in msg and "⚠️" not in msg:
            record.msg = f"⚠️  {record.msg}"

        return True


class JsonFormatter(logging.Formatter):
    """Basic JSON log formatter with OTel correlation."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "func": record.funcName,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            log_obj["trace_id"] = format(span_context.trace_id, "032x")
            log_obj["span_id"] = format(span_context.span_id, "016x")

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def get_tracer(name: str) -> trace.Tracer:
    """Returns a tracer for the given module name."""
    return trace.get_tracer(name)


def set_span_attribute(key: str, value: Any) -> None:
    """Sets an attribute on the current OTel span. Safe to call if no span active."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)


def resolve_log_level(level: int = logging.INFO) -> int:
    """Return ``level`` unless ``LOG_LEVEL`` names a valid override."""
    env_level = os.environ.get("LOG_LEVEL", "").upper()
    if env_level in _VALID_LEVELS:
        return int(getattr(logging, env_level))
    return level


def setup_logging(level: int = logging.INFO) -> None:
    """Configures logging for the engine.

    Honours ``LOG_LEVEL`` and ``LOG_FORMAT`` (``TEXT`` or ``JSON``).

    Args:
        level: The logging level to use (default: INFO)
    """
    level = resolve_log_level(level)
    stage_filter = StageLoggingFilter()

    if os.environ.get("LOG_FORMAT", "TEXT").upper() == "JSON":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        handler.addFilter(stage_filter)
        logging.getLogger().handlers = [handler]
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            force=True,
        )
        for h in logging.getLogger().handlers:
            h.addFilter(stage_filter)

    logging.getLogger().setLevel(level)


def setup_telemetry(level: int = logging.INFO, service_name: str = "voice-trace") -> None:
    """Configures logging plus a local TracerProvider when none is installed.

    Exporters are left to the host application; this only makes sure spans
    opened by the engine are recorded.
    """
    if not isinstance(trace.get_tracer_provider(), TracerProvider):
        trace.set_tracer_provider(
            TracerProvider(resource=Resource.create({"service.name": service_name}))
        )
    setup_logging(level)
