"""Derivation stages of the voice trace engine.

Each module is a pure transform over immutable inputs: span normalization,
hierarchy reconstruction, turn segmentation, latency aggregation, trace
grouping and timeline projection.
"""

from .formatting import (
    format_call_duration,
    format_clock_time,
    format_duration_ms,
    format_latency,
    format_playback_position,
)
from .hierarchy import build_span_hierarchy, flatten_spans
from .latency import (
    aggregate_latency,
    collect_samples,
    compute_stats,
    percentile,
    pipeline_duration,
    pipeline_formula,
    rate_latency,
    turn_total_latency,
)
from .normalizer import normalize_span, normalize_spans, to_epoch_seconds
from .platform import detect_platform, resolve_stt_in_total, stt_in_total
from .records import (
    classify_turn_status,
    extract_flagged_turn_ids,
    filter_and_order_records,
    main_operation,
    normalize_turn_record,
    normalize_turn_records,
)
from .timeline import (
    PlaybackSynchronizer,
    build_timeline,
    find_active_entry,
    sources_from_records,
    sources_from_turns,
)
from .turns import (
    has_child_spans,
    is_last_child_at_level,
    segment_turns,
    summarize_turns,
)
from .waterfall import build_waterfall, group_traces, layout_spans, waterfall_rows

__all__ = [
    "PlaybackSynchronizer",
    "aggregate_latency",
    "build_span_hierarchy",
    "build_timeline",
    "build_waterfall",
    "classify_turn_status",
    "collect_samples",
    "compute_stats",
    "detect_platform",
    "extract_flagged_turn_ids",
    "filter_and_order_records",
    "find_active_entry",
    "flatten_spans",
    "format_call_duration",
    "format_clock_time",
    "format_duration_ms",
    "format_latency",
    "format_playback_position",
    "group_traces",
    "has_child_spans",
    "is_last_child_at_level",
    "layout_spans",
    "main_operation",
    "normalize_span",
    "normalize_spans",
    "normalize_turn_record",
    "normalize_turn_records",
    "percentile",
    "pipeline_duration",
    "pipeline_formula",
    "rate_latency",
    "resolve_stt_in_total",
    "segment_turns",
    "sources_from_records",
    "sources_from_turns",
    "stt_in_total",
    "summarize_turns",
    "to_epoch_seconds",
    "turn_total_latency",
    "waterfall_rows",
]
