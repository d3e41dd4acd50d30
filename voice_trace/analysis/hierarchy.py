"""Span hierarchy reconstruction.

Rebuilds the parent/child forest of a session's spans from parent pointers.
Nodes live in an index-addressed arena: the input order defines each node's
index, and children are stored as index tuples.

Ordering rules:
- Roots and siblings are ordered by ``captured_at``; ties keep input order.
- When several spans share a ``span_id`` the first one owns the id, later
  duplicates are still emitted as nodes.
- A span naming itself as parent is a root.
- Spans caught in a parent cycle are unreachable from any root; the earliest
  such span is promoted to a root until every span has been emitted.
"""

import logging
from collections.abc import Sequence

from voice_trace.common import engine_stage
from voice_trace.schema import Span, SpanHierarchy, SpanNode

logger = logging.getLogger(__name__)


def _resolve_parents(spans: Sequence[Span]) -> list[int | None]:
    index_by_id: dict[str, int] = {}
    for i, span in enumerate(spans):
        index_by_id.setdefault(span.span_id, i)

    parents: list[int | None] = []
    for span in spans:
        parent_id = span.parent_span_id
        if parent_id is None or parent_id == span.span_id:
            parents.append(None)
        else:
            parents.append(index_by_id.get(parent_id))
    return parents


@engine_stage("build_span_hierarchy")
def build_span_hierarchy(spans: Sequence[Span]) -> SpanHierarchy:
    """Build the span forest and its depth-first flattened order.

    Args:
        spans: Normalized spans of one session, in any order.

    Returns:
        The hierarchy; ``order`` lists arena indices in pre-order.
    """
    if not spans:
        return SpanHierarchy()

    count = len(spans)
    parents = _resolve_parents(spans)

    def capture_order(i: int) -> tuple[float, int]:
        return (spans[i].captured_at, i)

    children: list[list[int]] = [[] for _ in range(count)]
    for i, parent in enumerate(parents):
        if parent is not None:
            children[parent].append(i)
    for kids in children:
        kids.sort(key=capture_order)

    roots = sorted((i for i in range(count) if parents[i] is None), key=capture_order)

    levels = [0] * count
    visited = [False] * count
    order: list[int] = []

    def walk(root: int) -> None:
        stack = [(root, 0)]
        while stack:
            i, level = stack.pop()
            visited[i] = True
            levels[i] = level
            order.append(i)
            stack.extend((child, level + 1) for child in reversed(children[i]))

    for root in roots:
        walk(root)

    promoted: list[int] = []
    while len(order) < count:
        candidate = min((i for i in range(count) if not visited[i]), key=capture_order)
        former_parent = parents[candidate]
        if former_parent is not None:
            children[former_parent].remove(candidate)
        parents[candidate] = None
        promoted.append(candidate)
        walk(candidate)

    if promoted:
        ids = [spans[i].span_id for i in promoted]
        logger.warning(f"Parent cycle detected, promoted spans to roots: {ids}")

    nodes = [
        SpanNode(
            index=i,
            span=span,
            level=levels[i],
            parent_index=parents[i],
            children=tuple(children[i]),
        )
        for i, span in enumerate(spans)
    ]
    return SpanHierarchy(nodes=nodes, order=order, roots=roots + promoted)


def flatten_spans(spans: Sequence[Span]) -> list[SpanNode]:
    """Convenience wrapper returning the pre-order node sequence."""
    return build_span_hierarchy(spans).flattened()
