"""Decorators for engine stages with OpenTelemetry instrumentation."""

import functools
import inspect
import logging
import time
from collections.abc import Callable, Sized
from typing import Any

from ..telemetry import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


def _size_of(value: Any) -> int | None:
    """Best-effort element count of a stage input or output."""
    if isinstance(value, str | bytes):
        return None
    if isinstance(value, Sized):
        return len(value)
    for attr in ("order", "nodes", "trace_groups"):
        inner = getattr(value, attr, None)
        if isinstance(inner, Sized):
            return len(inner)
    return None


def engine_stage(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator to mark a function as a derivation stage.

    This decorator provides:
    - An OTel span named ``voice_trace.<name>`` for every execution
    - Input/output size span attributes
    - Standardized logging of start, completion and failure with duration
    - Errors are logged before being re-raised

    Example:
        @engine_stage("segment_turns")
        def segment_turns(nodes: list[SpanNode]) -> list[Turn]:
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        span_name = f"voice_trace.{name}"

        def _start(args: tuple[Any, ...]) -> tuple[float, int | None]:
            in_size = _size_of(args[0]) if args else None
            logger.debug(f"Stage Start: '{name}' | Input size: {in_size}")
            return time.perf_counter(), in_size

        def _finish(span: Any, started: float, result: Any) -> None:
            duration_ms = (time.perf_counter() - started) * 1000
            out_size = _size_of(result)
            if out_size is not None:
                span.set_attribute("voice_trace.output_size", out_size)
            logger.debug(
                f"Stage Done: '{name}' | Output size: {out_size} | Duration: {duration_ms:.2f}ms"
            )

        def _fail(started: float, e: Exception) -> None:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.error(
                f"Stage Failed: '{name}' | Duration: {duration_ms:.2f}ms | Error: {e}",
                exc_info=True,
            )

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(span_name) as span:
                started, in_size = _start(args)
                if in_size is not None:
                    span.set_attribute("voice_trace.input_size", in_size)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _fail(started, e)
                    raise
                _finish(span, started, result)
                return result

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(span_name) as span:
                started, in_size = _start(args)
                if in_size is not None:
                    span.set_attribute("voice_trace.input_size", in_size)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _fail(started, e)
                    raise
                _finish(span, started, result)
                return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
