"""Span normalization.

Pure functions that coerce raw span records from different producers
(database rows, OTel exports, SDK payloads) into canonical ``Span`` models.
Field names are resolved with a fixed precedence order and every timestamp
representation is converted to seconds since epoch.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from voice_trace.common import engine_stage, parse_attributes
from voice_trace.schema import OperationType, Span

logger = logging.getLogger(__name__)

UNKNOWN_ID = "unknown"
UNKNOWN_NAME = "Unknown Operation"

# Candidate paths per concept, highest precedence first
_TRACE_ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("trace_id",),
    ("traceId",),
    ("context", "trace_id"),
    ("context", "traceId"),
)
_SPAN_ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("span_id",),
    ("spanId",),
    ("context", "span_id"),
    ("context", "spanId"),
    ("id",),
)
_PARENT_ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("parent_span_id",),
    ("parentSpanId",),
    ("parent_id",),
    ("context", "parent_span_id"),
    ("context", "parentSpanId"),
)
_TIMESTAMP_PATHS: tuple[tuple[str, ...], ...] = (
    ("captured_at",),
    ("capturedAt",),
    ("start_time",),
    ("startTime",),
    ("start_time_ns",),
    ("timestamp",),
)
_END_TIMESTAMP_PATHS: tuple[tuple[str, ...], ...] = (
    ("end_time",),
    ("endTime",),
    ("end_time_ns",),
)

# Magnitude thresholds used to detect the unit of a numeric epoch value.
# 1e11 seconds is far in the future, so anything above it is a finer unit.
_NANOS_THRESHOLD = 1e17
_MICROS_THRESHOLD = 1e14
_MILLIS_THRESHOLD = 1e11

_OPERATION_TYPES: dict[str, OperationType] = {op.value: op for op in OperationType}


def _lookup(record: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    value: Any = record
    for key in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _first_present(
    record: Mapping[str, Any], paths: tuple[tuple[str, ...], ...]
) -> Any:
    """Return the first non-empty value among ``paths``."""
    for path in paths:
        value = _lookup(record, path)
        if value is not None and value != "":
            return value
    return None


def _as_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _safe_float(value: Any) -> float | None:
    """Safely convert a value to a finite float, returning None on failure."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (ValueError, TypeError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def epoch_from_number(value: float) -> float:
    """Interpret a numeric epoch value of unknown unit as seconds."""
    magnitude = abs(value)
    if magnitude >= _NANOS_THRESHOLD:
        return value / 1e9
    if magnitude >= _MICROS_THRESHOLD:
        return value / 1e6
    if magnitude >= _MILLIS_THRESHOLD:
        return value / 1e3
    return value


def to_epoch_seconds(value: Any) -> float | None:
    """Convert a timestamp in any supported representation to epoch seconds.

    Supports numbers (seconds, milliseconds, microseconds or nanoseconds,
    detected by magnitude), numeric strings, ISO-8601 strings and
    ``datetime`` objects. Naive datetimes are treated as UTC.

    Returns:
        Seconds since epoch, or None when the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    if isinstance(value, int | float):
        number = _safe_float(value)
        return None if number is None else epoch_from_number(number)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        number = _safe_float(text)
        if number is not None:
            return epoch_from_number(number)
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    return None


def _resolve_duration_ms(
    record: Mapping[str, Any], captured_at: float | None
) -> float:
    for key in ("duration_ms", "durationMs"):
        ms = _safe_float(record.get(key))
        if ms is not None:
            return max(ms, 0.0)
    for key in ("duration_ns", "duration_nano"):
        ns = _safe_float(record.get(key))
        if ns is not None:
            return max(ns / 1_000_000, 0.0)

    end = to_epoch_seconds(_first_present(record, _END_TIMESTAMP_PATHS))
    if end is not None and captured_at is not None:
        return max((end - captured_at) * 1000, 0.0)
    return 0.0


def _resolve_operation_type(value: Any) -> OperationType:
    if isinstance(value, OperationType):
        return value
    if not isinstance(value, str):
        return OperationType.OTHER
    return _OPERATION_TYPES.get(value.strip().lower(), OperationType.OTHER)


def normalize_span(record: Any) -> Span | None:
    """Normalize one raw span record.

    Args:
        record: Loosely typed mapping from a span producer.

    Returns:
        The canonical span, or None when the record is not a mapping or has
        neither a name nor any identifier.
    """
    if isinstance(record, Span):
        return record
    if not isinstance(record, Mapping):
        return None

    name = record.get("name")
    name = str(name) if name not in (None, "") else None
    trace_id = _as_id(_first_present(record, _TRACE_ID_PATHS))
    span_id = _as_id(_first_present(record, _SPAN_ID_PATHS))

    if name is None and trace_id is None and span_id is None:
        return None

    raw_ts = _first_present(record, _TIMESTAMP_PATHS)
    captured_at = to_epoch_seconds(raw_ts)
    if captured_at is None and raw_ts is not None:
        logger.debug(f"Unparseable timestamp {raw_ts!r} on span {span_id}")

    return Span(
        trace_id=trace_id or UNKNOWN_ID,
        span_id=span_id or UNKNOWN_ID,
        parent_span_id=_as_id(_first_present(record, _PARENT_ID_PATHS)),
        name=name or UNKNOWN_NAME,
        operation_type=_resolve_operation_type(
            record.get("operation_type", record.get("operationType"))
        ),
        captured_at=captured_at or 0.0,
        duration_ms=_resolve_duration_ms(record, captured_at),
        attributes=parse_attributes(record.get("attributes")),
        session_id=_as_id(record.get("session_id")),
        request_id=_as_id(record.get("request_id")),
        request_id_source=_as_id(record.get("request_id_source")),
    )


@engine_stage("normalize_spans")
def normalize_spans(records: Iterable[Any]) -> list[Span]:
    """Normalize a batch of raw span records, dropping unidentifiable ones."""
    spans: list[Span] = []
    dropped = 0
    for record in records:
        span = normalize_span(record)
        if span is None:
            dropped += 1
            continue
        spans.append(span)

    if dropped:
        logger.debug(f"Dropped {dropped} unidentifiable span record(s)")
    return spans
