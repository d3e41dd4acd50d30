"""Pydantic schemas for the voice trace engine.

This module defines Pydantic schemas for:
- Canonical spans and the reconstructed span hierarchy (SpanNode, SpanHierarchy)
- Conversation turns produced by the turn segmenter
- Per-turn metric records and latency statistics
- Waterfall (trace-grouped) layout structures
- Playback timeline entries and synchronizer directives
- The per-session snapshot handed to the presentation layer
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue


class OperationType(str, Enum):
    """Coarse category of a recorded sub-operation."""

    LLM = "llm"
    TTS = "tts"
    STT = "stt"
    TOOL = "tool"
    USER_INTERACTION = "user_interaction"
    ASSISTANT_INTERACTION = "assistant_interaction"
    OTHER = "other"


class TurnType(str, Enum):
    """Classification of a conversation turn."""

    SESSION_MANAGEMENT = "session_management"
    USER_TURN = "user_turn"
    ASSISTANT_TURN = "assistant_turn"


class TurnStatus(str, Enum):
    """Triage status of a per-turn metric record."""

    BUG_REPORT = "bug_report"
    ERROR = "error"
    WARNING = "warning"
    SUCCESS = "success"


class Platform(str, Enum):
    """Voice agent platform, decides whether STT time is additive."""

    VAPI = "vapi"
    VOICE = "voice"
    UNKNOWN = "unknown"


class LatencyRating(str, Enum):
    """Qualitative rating of a latency value."""

    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class SnapshotStatus(str, Enum):
    """Outcome of a session derivation."""

    SUCCESS = "success"
    NO_DATA = "no_data"


class DirectiveAction(str, Enum):
    """Side effects the synchronizer asks the presentation layer to perform."""

    SCROLL_TO = "scroll_to"
    HIGHLIGHT = "highlight"
    CLEAR_HIGHLIGHT = "clear_highlight"


# =============================================================================
# Span Schemas
# =============================================================================


class Span(BaseModel):
    """One recorded sub-operation in canonical form."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    trace_id: str = Field(default="unknown", description="Causal execution id")
    span_id: str = Field(default="unknown", description="Span id, unique per trace")
    parent_span_id: str | None = Field(
        default=None, description="Parent span id if nested"
    )
    name: str = Field(default="Unknown Operation", description="Operation label")
    operation_type: OperationType = Field(
        default=OperationType.OTHER, description="Coarse operation category"
    )
    captured_at: float = Field(
        default=0.0, description="Capture instant (seconds since epoch)"
    )
    duration_ms: float = Field(default=0.0, ge=0.0, description="Duration (ms)")
    attributes: dict[str, JsonValue] = Field(
        default_factory=dict, description="Open key-value attribute bag"
    )
    session_id: str | None = Field(default=None, description="Owning session id")
    request_id: str | None = Field(default=None, description="Request id")
    request_id_source: str | None = Field(
        default=None, description="Where the request id came from"
    )

    @property
    def end_time(self) -> float:
        """End instant in seconds since epoch."""
        return self.captured_at + self.duration_ms / 1000

    @property
    def has_error(self) -> bool:
        """Whether the span is flagged as an error."""
        return self.attributes.get("error") is True or "error" in self.name


class SpanNode(BaseModel):
    """A span placed in the reconstructed forest.

    Nodes live in an index-addressed arena; ``parent_index`` and ``children``
    reference other nodes by their arena index.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    index: int = Field(description="Position of the node in the arena")
    span: Span = Field(description="The underlying span")
    level: int = Field(default=0, ge=0, description="Nesting depth")
    parent_index: int | None = Field(
        default=None, description="Arena index of the resolved parent"
    )
    children: tuple[int, ...] = Field(
        default=(), description="Arena indices of children, in capture order"
    )


class SpanHierarchy(BaseModel):
    """Forest of spans plus its depth-first flattened order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    nodes: list[SpanNode] = Field(
        default_factory=list, description="Arena of nodes in input order"
    )
    order: list[int] = Field(
        default_factory=list, description="Pre-order traversal as arena indices"
    )
    roots: list[int] = Field(
        default_factory=list, description="Arena indices of root nodes"
    )

    def flattened(self) -> list[SpanNode]:
        """Return the nodes in pre-order."""
        return [self.nodes[i] for i in self.order]

    @property
    def max_depth(self) -> int:
        return max((n.level for n in self.nodes), default=0)


# =============================================================================
# Turn Schemas
# =============================================================================


class Turn(BaseModel):
    """A conversation turn bounded by session/user/assistant markers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(description="Turn identifier, e.g. 'turn-2-user_turn'")
    type: TurnType = Field(description="Turn classification")
    title: str = Field(description="Human-readable label")
    spans: list[SpanNode] = Field(
        default_factory=list, description="Member spans, flattened and depth-preserving"
    )
    start_time: float = Field(default=0.0, description="Earliest capture instant")
    duration_ms: float = Field(
        default=0.0, description="Sum of member span durations (ms)"
    )

    @property
    def main_span(self) -> SpanNode | None:
        return self.spans[0] if self.spans else None


# =============================================================================
# Metric Record Schemas
# =============================================================================


class SttMetrics(BaseModel):
    """Speech-to-text stage metrics (seconds)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    duration: float | None = Field(default=None, description="Processing time")
    audio_duration: float | None = Field(default=None, description="Audio length")


class LlmMetrics(BaseModel):
    """Inference stage metrics (seconds)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ttft: float | None = Field(default=None, description="Time to first token")
    duration: float | None = Field(default=None, description="Total inference time")
    prompt_tokens: int | None = Field(default=None, description="Input tokens")
    completion_tokens: int | None = Field(default=None, description="Output tokens")


class TtsMetrics(BaseModel):
    """Speech synthesis stage metrics (seconds)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ttfb: float | None = Field(default=None, description="Time to first byte")
    duration: float | None = Field(default=None, description="Synthesis time")
    audio_duration: float | None = Field(default=None, description="Audio length")
    length: float | None = Field(default=None, description="Alternate audio length")


class EouMetrics(BaseModel):
    """End-of-utterance detection metrics (seconds)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    end_of_utterance_delay: float | None = Field(
        default=None, description="Delay after the speaker stopped talking"
    )


class TurnRecord(BaseModel):
    """Per-turn transcript and metric record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default="", description="Record id")
    session_id: str = Field(default="", description="Session id")
    turn_id: str = Field(default="", description="Turn id, e.g. 'turn_3'")
    user_transcript: str = Field(default="", description="What the user said")
    agent_response: str = Field(default="", description="What the agent replied")
    stt: SttMetrics | None = Field(default=None, description="STT metrics")
    llm: LlmMetrics | None = Field(default=None, description="LLM metrics")
    tts: TtsMetrics | None = Field(default=None, description="TTS metrics")
    eou: EouMetrics | None = Field(default=None, description="EOU metrics")
    llm_metrics_empty: bool = Field(
        default=False, description="LLM metrics present but empty"
    )
    tool_calls: list[dict[str, JsonValue]] = Field(
        default_factory=list, description="Tool invocations in this turn"
    )
    otel_spans: list[dict[str, JsonValue]] = Field(
        default_factory=list, description="Raw OTel spans attached to this turn"
    )
    trace_id: str | None = Field(default=None, description="Trace id of the turn")
    trace_duration_ms: float | None = Field(
        default=None, description="Trace-level duration (ms)"
    )
    trace_cost_usd: float | None = Field(default=None, description="Trace cost")
    call_duration_seconds: float | None = Field(
        default=None, description="Call-level duration (seconds)"
    )
    created_at: str | None = Field(default=None, description="ISO creation time")
    unix_timestamp: float | None = Field(default=None, description="Unix timestamp")
    call_success: bool | None = Field(default=None, description="Call outcome")
    bug_report: bool = Field(default=False, description="Flagged as a bug report")
    metadata: dict[str, JsonValue] = Field(
        default_factory=dict, description="Free-form metadata"
    )

    @property
    def transcript_chars(self) -> int:
        return len(self.user_transcript) + len(self.agent_response)


# =============================================================================
# Latency Schemas
# =============================================================================


class Stats(BaseModel):
    """Aggregate statistics over a sample set."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    avg: float = Field(default=0.0, description="Arithmetic mean")
    min: float = Field(default=0.0, description="Smallest sample")
    max: float = Field(default=0.0, description="Largest sample")
    count: int = Field(default=0, description="Number of samples")
    p50: float = Field(default=0.0, description="50th percentile")
    p75: float = Field(default=0.0, description="75th percentile")


class LatencySamples(BaseModel):
    """Raw per-dimension samples collected across turns (seconds)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    stt: list[float] = Field(default_factory=list)
    llm: list[float] = Field(default_factory=list)
    tts: list[float] = Field(default_factory=list)
    eou: list[float] = Field(default_factory=list)
    agent_response: list[float] = Field(default_factory=list)
    total_turn: list[float] = Field(default_factory=list)
    end_to_end: list[float] = Field(default_factory=list)


class LatencyReport(BaseModel):
    """Latency statistics for a session."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_turns: int = Field(default=0, description="Number of records analyzed")
    stt_in_total: bool = Field(
        default=False, description="Whether STT time was added to composites"
    )
    stt: Stats = Field(default_factory=Stats)
    llm: Stats = Field(default_factory=Stats)
    tts: Stats = Field(default_factory=Stats)
    eou: Stats = Field(default_factory=Stats)
    agent_response: Stats = Field(default_factory=Stats)
    total_turn: Stats = Field(default_factory=Stats)
    end_to_end: Stats = Field(default_factory=Stats)
    p50_total_latency: float = Field(default=0.0)
    p50_agent_response_time: float = Field(default=0.0)
    p50_end_to_end_latency: float = Field(default=0.0)
    samples: LatencySamples = Field(default_factory=LatencySamples)


# =============================================================================
# Waterfall Schemas
# =============================================================================


class TraceGroup(BaseModel):
    """Spans sharing one trace id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    trace_id: str = Field(description="Trace identifier")
    spans: list[Span] = Field(description="Member spans ordered by capture time")
    root_span: Span = Field(description="First parentless span, else the first span")
    start_time: float = Field(description="Earliest span start (seconds)")
    end_time: float = Field(description="Latest span end (seconds)")
    duration_ms: float = Field(description="Wall-clock extent (ms)")
    operation_summary: str = Field(description="Operation counts, e.g. '2 llm • 1 tts'")
    span_count: int = Field(description="Number of member spans")
    error_count: int = Field(default=0, description="Number of error spans")


class SpanLayout(BaseModel):
    """Proportional coordinates of a span inside its trace group."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    span_id: str
    start_percent: float
    width_percent: float


class WaterfallRow(BaseModel):
    """A rendered row of the waterfall view."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(description="Row identifier")
    row_type: str = Field(description="'trace_header' or 'span'")
    name: str = Field(description="Row label")
    start_time: float = Field(description="Start instant (seconds)")
    duration_ms: float = Field(description="Duration (ms)")
    start_percent: float = Field(default=0.0)
    width_percent: float = Field(default=100.0)
    level: int = Field(default=0)
    row_index: int = Field(default=0)
    operation_type: str = Field(default=OperationType.OTHER.value)
    span_count: int | None = Field(default=None)
    error_count: int | None = Field(default=None)
    request_id: str | None = Field(default=None)
    attributes: dict[str, JsonValue] | None = Field(default=None)


class Waterfall(BaseModel):
    """Trace-grouped session overview."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeline_start: float = Field(default=0.0)
    timeline_end: float = Field(default=0.0)
    total_duration_ms: float = Field(default=0.0)
    trace_groups: list[TraceGroup] = Field(default_factory=list)
    total_spans: int = Field(default=0)
    total_errors: int = Field(default=0)
    min_width_percent: float = Field(
        default=0.5, ge=0, le=100, description="Visibility floor for bars (percent)"
    )


# =============================================================================
# Timeline Schemas
# =============================================================================


class TimelineSource(BaseModel):
    """One item to place on the playback axis."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    turn_id: str = Field(description="Identifier reported back in directives")
    record: TurnRecord | None = Field(
        default=None, description="Measured metrics for this item, if any"
    )


class TimelineEntry(BaseModel):
    """A turn's interval on the synthetic cumulative playback axis."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    turn_id: str = Field(description="Turn identifier")
    index: int = Field(description="Position in the timeline")
    start_time: float = Field(description="Interval start (seconds)")
    end_time: float = Field(description="Interval end (seconds)")
    latency: float = Field(default=0.0, description="Measured latency part")
    audio_duration: float = Field(default=0.0, description="Measured audio part")
    estimated: bool = Field(
        default=False, description="Whether the heuristic fallback was used"
    )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class PlaybackDirective(BaseModel):
    """Instruction for the presentation layer."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: DirectiveAction
    turn_id: str | None = None


# =============================================================================
# Session Snapshot
# =============================================================================


class SessionSnapshot(BaseModel):
    """Everything derived from one input batch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: int = Field(default=0, description="Input version this was derived from")
    status: SnapshotStatus = Field(default=SnapshotStatus.NO_DATA)
    spans: list[Span] = Field(default_factory=list)
    hierarchy: SpanHierarchy = Field(default_factory=SpanHierarchy)
    turns: list[Turn] = Field(default_factory=list)
    records: list[TurnRecord] = Field(default_factory=list)
    latency: LatencyReport = Field(default_factory=LatencyReport)
    waterfall: Waterfall = Field(default_factory=Waterfall)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    platform: Platform = Field(default=Platform.UNKNOWN)
    metadata: dict[str, Any] = Field(default_factory=dict)
