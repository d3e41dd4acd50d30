"""Trace-grouped waterfall layout.

Buckets a session's spans by trace id and computes proportional
(percentage-of-trace) coordinates for a waterfall rendering. Coordinates
are pure presentation values derived on demand, never stored on spans.
"""

import logging
from collections.abc import Collection, Sequence

from voice_trace.common import engine_stage
from voice_trace.schema import (
    Span,
    SpanLayout,
    TraceGroup,
    Waterfall,
    WaterfallRow,
)

from .hierarchy import build_span_hierarchy

logger = logging.getLogger(__name__)

MIN_WIDTH_PERCENT = 0.5

ROW_TRACE_HEADER = "trace_header"
ROW_SPAN = "span"


def summarize_operations(spans: Sequence[Span]) -> str:
    """Operation counts in encounter order, e.g. ``"2 llm • 1 tts"``."""
    counts: dict[str, int] = {}
    for span in spans:
        op = span.operation_type.value
        counts[op] = counts.get(op, 0) + 1
    summary = " • ".join(f"{count} {op}" for op, count in counts.items())
    return summary or f"{len(spans)} operations"


def _make_group(trace_id: str, spans: list[Span]) -> TraceGroup:
    ordered = sorted(spans, key=lambda s: s.captured_at)
    root = next((s for s in ordered if not s.parent_span_id), ordered[0])
    start = min(s.captured_at for s in ordered)
    end = max(s.end_time for s in ordered)
    return TraceGroup(
        trace_id=trace_id,
        spans=ordered,
        root_span=root,
        start_time=start,
        end_time=end,
        duration_ms=(end - start) * 1000,
        operation_summary=summarize_operations(ordered),
        span_count=len(ordered),
        error_count=sum(1 for s in ordered if s.has_error),
    )


@engine_stage("group_traces")
def group_traces(spans: Sequence[Span]) -> list[TraceGroup]:
    """Group spans by trace id, ordered by group start time.

    Spans with an empty trace id are skipped.
    """
    buckets: dict[str, list[Span]] = {}
    skipped = 0
    for span in spans:
        if not span.trace_id:
            skipped += 1
            continue
        buckets.setdefault(span.trace_id, []).append(span)

    if skipped:
        logger.debug(f"Skipped {skipped} span(s) without a trace id")

    groups = [_make_group(trace_id, members) for trace_id, members in buckets.items()]
    groups.sort(key=lambda g: g.start_time)
    return groups


def build_waterfall(
    spans: Sequence[Span],
    groups: Sequence[TraceGroup] | None = None,
    min_width_percent: float = MIN_WIDTH_PERCENT,
) -> Waterfall:
    """Overall waterfall summary with timeline bounds and totals.

    ``min_width_percent`` is kept on the result as the default bar floor for
    ``waterfall_rows``.
    """
    if groups is None:
        groups = group_traces(spans)
    if not groups:
        return Waterfall(min_width_percent=min_width_percent)

    start = min(g.start_time for g in groups)
    end = max(g.end_time for g in groups)
    return Waterfall(
        timeline_start=start,
        timeline_end=end,
        total_duration_ms=(end - start) * 1000,
        trace_groups=list(groups),
        total_spans=sum(g.span_count for g in groups),
        total_errors=sum(g.error_count for g in groups),
        min_width_percent=min_width_percent,
    )


def span_position(
    span: Span,
    start_time: float,
    duration_ms: float,
    min_width_percent: float = MIN_WIDTH_PERCENT,
) -> tuple[float, float]:
    """``(start_percent, width_percent)`` of a span inside a window.

    A zero-length window places every span at 0 with full width.
    """
    if duration_ms <= 0:
        return 0.0, 100.0
    start_percent = (span.captured_at - start_time) / (duration_ms / 1000) * 100
    width_percent = max(span.duration_ms / duration_ms * 100, min_width_percent)
    return start_percent, width_percent


def layout_spans(
    group: TraceGroup, min_width_percent: float = MIN_WIDTH_PERCENT
) -> list[SpanLayout]:
    """Proportional coordinates of each span in ``group``."""
    layouts: list[SpanLayout] = []
    for span in group.spans:
        start_percent, width_percent = span_position(
            span, group.start_time, group.duration_ms, min_width_percent
        )
        layouts.append(
            SpanLayout(
                span_id=span.span_id,
                start_percent=start_percent,
                width_percent=width_percent,
            )
        )
    return layouts


def waterfall_rows(
    waterfall: Waterfall,
    expanded: Collection[str] = (),
    min_width_percent: float | None = None,
) -> list[WaterfallRow]:
    """Flatten the waterfall into rows for rendering.

    Every trace group yields a header row positioned on the session timeline.
    Groups whose trace id is in ``expanded`` also yield one row per span, in
    hierarchy order, positioned inside the group. Bars narrower than
    ``min_width_percent`` (the waterfall's own floor when omitted) are widened.
    """
    if min_width_percent is None:
        min_width_percent = waterfall.min_width_percent
    rows: list[WaterfallRow] = []

    for group in waterfall.trace_groups:
        start_percent, width_percent = _header_position(
            group, waterfall, min_width_percent
        )
        rows.append(
            WaterfallRow(
                id=group.trace_id,
                row_type=ROW_TRACE_HEADER,
                name=group.root_span.name,
                start_time=group.start_time,
                duration_ms=group.duration_ms,
                start_percent=start_percent,
                width_percent=width_percent,
                row_index=len(rows),
                operation_type=group.root_span.operation_type.value,
                span_count=group.span_count,
                error_count=group.error_count,
                request_id=group.root_span.request_id,
            )
        )

        if group.trace_id not in expanded:
            continue

        hierarchy = build_span_hierarchy(group.spans)
        for node in hierarchy.flattened():
            span = node.span
            span_start, span_width = span_position(
                span, group.start_time, group.duration_ms, min_width_percent
            )
            rows.append(
                WaterfallRow(
                    id=f"{group.trace_id}:{span.span_id}",
                    row_type=ROW_SPAN,
                    name=span.name,
                    start_time=span.captured_at,
                    duration_ms=span.duration_ms,
                    start_percent=span_start,
                    width_percent=span_width,
                    level=node.level,
                    row_index=len(rows),
                    operation_type=span.operation_type.value,
                    request_id=span.request_id,
                    attributes=dict(span.attributes),
                )
            )
    return rows


def _header_position(
    group: TraceGroup, waterfall: Waterfall, min_width_percent: float
) -> tuple[float, float]:
    total_ms = waterfall.total_duration_ms
    if total_ms <= 0:
        return 0.0, 100.0
    start_percent = (group.start_time - waterfall.timeline_start) / (total_ms / 1000) * 100
    width_percent = max(group.duration_ms / total_ms * 100, min_width_percent)
    return start_percent, width_percent
