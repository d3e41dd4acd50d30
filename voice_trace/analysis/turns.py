"""Conversation turn segmentation.

Groups the flattened span sequence into turns bounded by marker spans
(``user_turn``, ``assistant_turn``, ``start_agent_activity`` and
``drain_agent_activity``). Spans before the first marker belong to no turn.
"""

import logging
from collections.abc import Iterable, Sequence

from voice_trace.common import engine_stage
from voice_trace.schema import SpanHierarchy, SpanNode, Turn, TurnType

logger = logging.getLogger(__name__)

TURN_MARKERS = frozenset(
    {"user_turn", "assistant_turn", "start_agent_activity", "drain_agent_activity"}
)

_TURN_TITLES: dict[str, str] = {
    "user_turn": "user_turn",
    "assistant_turn": "assistant_turn",
    "start_agent_activity": "start_agent_activity",
    "drain_agent_activity": "drain_agent_activity",
}


def is_turn_marker(name: str | None) -> bool:
    """Whether a span name opens a new turn (case-insensitive)."""
    if not name:
        return False
    return name.lower() in TURN_MARKERS


def classify_turn_type(node: SpanNode) -> TurnType:
    name = node.span.name.lower()
    if name == "user_turn":
        return TurnType.USER_TURN
    if name == "assistant_turn":
        return TurnType.ASSISTANT_TURN
    return TurnType.SESSION_MANAGEMENT


def turn_title(node: SpanNode) -> str:
    name = node.span.name
    return _TURN_TITLES.get(name.lower(), name or "Unknown")


def _finalize_turn(members: list[SpanNode], position: int) -> Turn:
    first = members[0]
    turn_type = classify_turn_type(first)
    starts = [n.span.captured_at for n in members if n.span.captured_at > 0]
    return Turn(
        id=f"turn-{position}-{turn_type.value}",
        type=turn_type,
        title=turn_title(first),
        spans=list(members),
        start_time=min(starts) if starts else 0.0,
        # Additive on purpose: dashboards expect per-turn cost, not wall-clock
        duration_ms=sum(n.span.duration_ms for n in members),
    )


@engine_stage("segment_turns")
def segment_turns(nodes: SpanHierarchy | Iterable[SpanNode]) -> list[Turn]:
    """Segment the pre-order span sequence into conversation turns.

    Args:
        nodes: A hierarchy, or its flattened node sequence.

    Returns:
        Turns in sequence order.
    """
    flat = nodes.flattened() if isinstance(nodes, SpanHierarchy) else list(nodes)

    turns: list[Turn] = []
    current: list[SpanNode] = []
    skipped = 0

    for node in flat:
        if is_turn_marker(node.span.name):
            if current:
                turns.append(_finalize_turn(current, len(turns) + 1))
            current = [node]
        elif current:
            current.append(node)
        else:
            skipped += 1

    if current:
        turns.append(_finalize_turn(current, len(turns) + 1))

    if skipped:
        logger.debug(f"{skipped} span(s) before the first turn marker left unassigned")
    return turns


def summarize_turns(turns: Sequence[Turn]) -> str:
    """Header line, e.g. ``"3 turns • 12 spans"``."""
    span_count = sum(len(t.spans) for t in turns)
    return f"{len(turns)} turns • {span_count} spans"


def has_child_spans(spans: Sequence[SpanNode], index: int) -> bool:
    """Whether the span at ``index`` is followed by a deeper span."""
    if index + 1 >= len(spans):
        return False
    return spans[index + 1].level > spans[index].level


def is_last_child_at_level(spans: Sequence[SpanNode], index: int) -> bool:
    """Whether no later sibling follows the span at ``index``.

    Scanning stops at the first span that is shallower than the current one,
    since that closes the sibling group.
    """
    level = spans[index].level
    for node in spans[index + 1 :]:
        if node.level < level:
            return True
        if node.level == level:
            return False
    return True
