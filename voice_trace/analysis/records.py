"""Per-turn metric record parsing and triage.

Pure functions that transform raw transcript/metric rows into typed
``TurnRecord`` models, order them by turn number and classify each turn's
status for the session table.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from voice_trace.common import engine_stage, normalize_value
from voice_trace.schema import (
    EouMetrics,
    LlmMetrics,
    SttMetrics,
    TtsMetrics,
    TurnRecord,
    TurnStatus,
)

logger = logging.getLogger(__name__)

_TURN_NUMBER_RE = re.compile(r"(\d+)")

# OTel status codes: numeric 2 is STATUS_CODE_ERROR
_ERROR_STATUS_CODES = frozenset({"ERROR", "STATUS_CODE_ERROR", "2"})
_UNSET_STATUS_CODES = frozenset({"UNSET", "STATUS_CODE_UNSET"})

_TEXT_FIELDS = ("id", "session_id", "turn_id", "user_transcript", "agent_response")
_INT_FIELDS = frozenset({"prompt_tokens", "completion_tokens"})


def _safe_int(value: Any) -> int | None:
    """Safely convert a value to int, returning None on failure."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (ValueError, TypeError, OverflowError):
        return None


def _safe_float(value: Any) -> float | None:
    """Safely convert a value to a finite float, returning None on failure."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (ValueError, TypeError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _load_json_object(raw: Any) -> dict[str, Any] | None:
    """Decode a sub-record given as a mapping or JSON string.

    Returns None when nothing usable is present, so a missing sub-record and
    an invalid one are treated alike.
    """
    if raw is None:
        return None
    if isinstance(raw, str | bytes):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.debug("Ignoring metric sub-record that is not valid JSON")
            return None
    if isinstance(raw, Mapping):
        return dict(raw)
    return None


def _load_json_list(raw: Any) -> list[dict[str, Any]]:
    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            return []
    if not isinstance(raw, list | tuple):
        return []
    return [
        {str(k): normalize_value(v) for k, v in item.items()}
        for item in raw
        if isinstance(item, Mapping)
    ]


def _parse_metrics(raw: Any, model: type[BaseModel]) -> BaseModel | None:
    data = _load_json_object(raw)
    if data is None:
        return None
    values: dict[str, Any] = {}
    for name in model.model_fields:
        if name in _INT_FIELDS:
            values[name] = _safe_int(data.get(name))
        else:
            values[name] = _safe_float(data.get(name))
    return model(**values)


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def normalize_turn_record(raw: Any) -> TurnRecord | None:
    """Parse one raw transcript/metric row into a ``TurnRecord``.

    Metric sub-records are read from ``stt_metrics``/``llm_metrics``/
    ``tts_metrics``/``eou_metrics`` (or the short ``stt``/``llm``/...
    keys) and may be JSON strings. Unknown metric fields are ignored.

    Returns:
        The record, or None when ``raw`` is not a mapping.
    """
    if isinstance(raw, TurnRecord):
        return raw
    if not isinstance(raw, Mapping):
        return None

    raw_llm = _load_json_object(_first(raw, "llm_metrics", "llm"))
    metadata = _load_json_object(raw.get("metadata")) or {}
    call_success = raw.get("call_success")

    return TurnRecord(
        **{name: _as_text(raw.get(name)) for name in _TEXT_FIELDS},
        stt=_parse_metrics(_first(raw, "stt_metrics", "stt"), SttMetrics),
        llm=_parse_metrics(raw_llm, LlmMetrics),
        tts=_parse_metrics(_first(raw, "tts_metrics", "tts"), TtsMetrics),
        eou=_parse_metrics(_first(raw, "eou_metrics", "eou"), EouMetrics),
        llm_metrics_empty=raw_llm is not None and len(raw_llm) == 0,
        tool_calls=_load_json_list(raw.get("tool_calls")),
        otel_spans=_load_json_list(raw.get("otel_spans")),
        trace_id=_as_text(raw.get("trace_id")) or None,
        trace_duration_ms=_safe_float(raw.get("trace_duration_ms")),
        trace_cost_usd=_safe_float(raw.get("trace_cost_usd")),
        call_duration_seconds=_safe_float(raw.get("call_duration_seconds")),
        created_at=_as_text(raw.get("created_at")) or None,
        unix_timestamp=_safe_float(raw.get("unix_timestamp")),
        call_success=call_success if isinstance(call_success, bool) else None,
        bug_report=raw.get("bug_report") is True,
        metadata={str(k): normalize_value(v) for k, v in metadata.items()},
    )


@engine_stage("normalize_turn_records")
def normalize_turn_records(raws: Iterable[Any]) -> list[TurnRecord]:
    """Parse a batch of raw rows, skipping anything that is not a mapping."""
    records: list[TurnRecord] = []
    for raw in raws:
        record = normalize_turn_record(raw)
        if record is None:
            logger.debug(f"Skipping non-mapping turn record of type {type(raw).__name__}")
            continue
        records.append(record)
    return records


def turn_number(turn_id: str) -> int:
    """Numeric part of ``turn_<n>``; 0 when there is none."""
    text = turn_id.replace("turn_", "", 1).strip()
    match = _TURN_NUMBER_RE.match(text)
    return int(match.group(1)) if match else 0


def filter_and_order_records(records: Iterable[TurnRecord]) -> list[TurnRecord]:
    """Keep records carrying any content and sort them by turn number.

    The sort is stable, so records with equal (or missing) turn numbers keep
    their relative order.
    """
    kept = [
        r
        for r in records
        if r.user_transcript or r.agent_response or r.tool_calls or r.otel_spans
    ]
    return sorted(kept, key=lambda r: turn_number(r.turn_id))


def extract_flagged_turn_ids(
    call_metadata: Mapping[str, Any] | str | None,
    records: Iterable[TurnRecord] = (),
) -> set[str]:
    """Collect turn ids flagged as bug reports.

    Reads ``bug_flagged_turns`` from the call metadata (a mapping or JSON
    string) and adds every record whose ``bug_report`` flag is set.
    """
    flagged: set[str] = set()

    metadata = _load_json_object(call_metadata)
    flagged_turns = metadata.get("bug_flagged_turns") if metadata else None
    if isinstance(flagged_turns, list):
        for item in flagged_turns:
            if isinstance(item, Mapping) and item.get("turn_id"):
                flagged.add(str(item["turn_id"]))

    for record in records:
        if record.bug_report:
            flagged.add(record.turn_id)
    return flagged


def _status_code(span: Mapping[str, Any]) -> str | None:
    status = span.get("status")
    if not isinstance(status, Mapping):
        return None
    code = status.get("code")
    return None if code is None else str(code).upper()


def _tool_failed(tool: Mapping[str, Any]) -> bool:
    return tool.get("status") == "error" or tool.get("success") is False


def classify_turn_status(
    record: TurnRecord, flagged: set[str] | frozenset[str] = frozenset()
) -> TurnStatus:
    """Triage status of a turn.

    Precedence: a bug-report flag wins, then any error signal (error span
    status, failed tool call, empty LLM metrics, failed call), then warning
    (unset span status or a call not marked successful).
    """
    if record.turn_id in flagged:
        return TurnStatus.BUG_REPORT

    codes = [_status_code(span) for span in record.otel_spans]
    if (
        any(code in _ERROR_STATUS_CODES for code in codes)
        or any(_tool_failed(tool) for tool in record.tool_calls)
        or record.llm_metrics_empty
        or record.call_success is False
    ):
        return TurnStatus.ERROR

    if any(code in _UNSET_STATUS_CODES for code in codes) or not record.call_success:
        return TurnStatus.WARNING
    return TurnStatus.SUCCESS


def _has_values(metrics: BaseModel | None) -> bool:
    if metrics is None:
        return False
    return any(v is not None for v in metrics.model_dump().values())


def main_operation(record: TurnRecord) -> str:
    """Dominant operation of a turn: tool, llm, stt, tts, eou or general."""
    if record.tool_calls:
        return "tool"
    for name in ("llm", "stt", "tts", "eou"):
        if _has_values(getattr(record, name)):
            return name
    return "general"
