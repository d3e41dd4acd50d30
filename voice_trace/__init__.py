"""Voice Trace - trace reconstruction and playback timeline engine.

This library rebuilds the structure of voice-agent call sessions from flat
instrumentation spans: span hierarchy, conversation turns, latency
statistics, a trace-grouped waterfall and a playback timeline kept in step
with audio.
"""

from .config import EngineSettings, get_settings, reset_settings
from .engine import SessionTraceEngine, derive_snapshot, derive_snapshot_async
from .exceptions import ConfigurationError, InvalidPercentileError, VoiceTraceError
from .schema import (
    LatencyReport,
    PlaybackDirective,
    SessionSnapshot,
    Span,
    SpanHierarchy,
    SpanNode,
    Stats,
    TimelineEntry,
    TraceGroup,
    Turn,
    TurnRecord,
    Waterfall,
)
from .telemetry import setup_logging, setup_telemetry

__all__ = [
    "ConfigurationError",
    "EngineSettings",
    "InvalidPercentileError",
    "LatencyReport",
    "PlaybackDirective",
    "SessionSnapshot",
    "SessionTraceEngine",
    "Span",
    "SpanHierarchy",
    "SpanNode",
    "Stats",
    "TimelineEntry",
    "TraceGroup",
    "Turn",
    "TurnRecord",
    "VoiceTraceError",
    "Waterfall",
    "derive_snapshot",
    "derive_snapshot_async",
    "get_settings",
    "reset_settings",
    "setup_logging",
    "setup_telemetry",
]
