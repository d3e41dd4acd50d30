"""Tests for the session engine."""

import asyncio
import logging
from unittest.mock import patch

import pytest

from voice_trace.analysis.waterfall import waterfall_rows
from voice_trace.config import EngineSettings
from voice_trace.engine import SessionTraceEngine, derive_snapshot, derive_snapshot_async
from voice_trace.schema import (
    DirectiveAction,
    PlaybackDirective,
    Platform,
    SnapshotStatus,
)


@pytest.fixture
def raw_spans() -> list[dict]:
    return [
        {"trace_id": "t1", "span_id": "s1", "name": "start_agent_activity",
         "captured_at": 1000.0, "duration_ms": 100},
        {"trace_id": "t1", "span_id": "s2", "name": "user_turn", "captured_at": 1001.0,
         "duration_ms": 800, "attributes": {"turn_id": "turn_1"}},
        {"trace_id": "t1", "span_id": "s3", "parent_span_id": "s2", "name": "llm_call",
         "captured_at": 1001.2, "duration_ms": 400, "operation_type": "llm"},
        {"trace_id": "t2", "span_id": "s4", "name": "assistant_turn", "captured_at": 1002.0,
         "duration_ms": 600, "attributes": {"turn_id": "turn_2"}},
        {"trace_id": "t2", "span_id": "s5", "parent_span_id": "s4", "name": "tts",
         "captured_at": 1002.1, "duration_ms": 300, "operation_type": "tts"},
    ]


@pytest.fixture
def raw_records() -> list[dict]:
    return [
        {
            "turn_id": "turn_2",
            "user_transcript": "bye",
            "llm_metrics": {},
            "call_success": True,
        },
        {
            "turn_id": "turn_1",
            "user_transcript": "hi",
            "agent_response": "hello",
            "stt_metrics": {"duration": 0.5},
            "llm_metrics": {"ttft": 0.8},
            "tts_metrics": {"ttfb": 0.3, "duration": 1.0, "audio_duration": 2.0},
            "eou_metrics": {"end_of_utterance_delay": 0.2},
            "call_success": True,
        },
    ]


class TestDeriveSnapshot:
    """Tests for the stateless derivation."""

    def test_no_data(self) -> None:
        snapshot = derive_snapshot([], [], version=7)
        assert snapshot.status == SnapshotStatus.NO_DATA
        assert snapshot.version == 7
        assert snapshot.turns == []
        assert snapshot.timeline == []

    def test_none_inputs(self) -> None:
        assert derive_snapshot(None, None).status == SnapshotStatus.NO_DATA

    def test_full_session(self, raw_spans: list[dict], raw_records: list[dict]) -> None:
        snapshot = derive_snapshot(raw_spans, raw_records, version=1)

        assert snapshot.status == SnapshotStatus.SUCCESS
        assert len(snapshot.spans) == 5
        assert [t.id for t in snapshot.turns] == [
            "turn-1-session_management",
            "turn-2-user_turn",
            "turn-3-assistant_turn",
        ]
        assert [r.turn_id for r in snapshot.records] == ["turn_1", "turn_2"]
        assert snapshot.latency.total_turns == 2
        assert snapshot.latency.llm.count == 1
        assert [g.trace_id for g in snapshot.waterfall.trace_groups] == ["t1", "t2"]
        assert snapshot.waterfall.total_spans == 5
        assert snapshot.platform == Platform.UNKNOWN
        assert snapshot.metadata["summary"] == "3 turns • 5 spans"
        assert snapshot.metadata["turn_statuses"] == {"turn_1": "success", "turn_2": "error"}
        assert snapshot.metadata["flagged_turn_ids"] == []
        assert snapshot.metadata["stt_in_total"] is False

    def test_timeline_pairs_turns_with_records(
        self, raw_spans: list[dict], raw_records: list[dict]
    ) -> None:
        timeline = derive_snapshot(raw_spans, raw_records).timeline

        assert [e.turn_id for e in timeline] == [
            "turn-1-session_management",
            "turn-2-user_turn",
            "turn-3-assistant_turn",
        ]
        # The session marker has no record, so its duration is estimated
        assert timeline[0].estimated is True
        assert timeline[0].duration == pytest.approx(2.0)
        assert timeline[1].estimated is False
        assert timeline[1].audio_duration == pytest.approx(2.0)
        for current, following in zip(timeline, timeline[1:]):
            assert current.end_time == following.start_time

    def test_records_only_timeline(self, raw_records: list[dict]) -> None:
        snapshot = derive_snapshot([], raw_records)
        assert snapshot.status == SnapshotStatus.SUCCESS
        assert snapshot.turns == []
        assert [e.turn_id for e in snapshot.timeline] == ["turn_1", "turn_2"]

    def test_bug_flags(self, raw_spans: list[dict], raw_records: list[dict]) -> None:
        snapshot = derive_snapshot(
            raw_spans,
            raw_records,
            call_metadata={"bug_flagged_turns": [{"turn_id": "turn_2"}]},
        )
        assert snapshot.metadata["flagged_turn_ids"] == ["turn_2"]
        assert snapshot.metadata["turn_statuses"]["turn_2"] == "bug_report"

    def test_vapi_agent_includes_stt(self, raw_records: list[dict]) -> None:
        snapshot = derive_snapshot([], raw_records, agent={"agent_type": "vapi"})
        assert snapshot.platform == Platform.VAPI
        assert snapshot.metadata["stt_in_total"] is True
        assert snapshot.latency.total_turn.avg == pytest.approx(2.6)

    def test_explicit_flag_overrides_platform(self, raw_records: list[dict]) -> None:
        snapshot = derive_snapshot(
            [], raw_records, agent={"agent_type": "vapi"}, stt_in_total=False
        )
        assert snapshot.platform == Platform.VAPI
        assert snapshot.metadata["stt_in_total"] is False
        assert snapshot.latency.total_turn.avg == pytest.approx(2.1)

    def test_settings_flag_used_when_no_explicit_flag(self, raw_records: list[dict]) -> None:
        snapshot = derive_snapshot(
            [], raw_records, settings=EngineSettings(stt_in_total=True)
        )
        assert snapshot.metadata["stt_in_total"] is True

    def test_settings_from_environment(
        self, monkeypatch: pytest.MonkeyPatch, raw_spans: list[dict]
    ) -> None:
        monkeypatch.setenv("VOICE_TRACE_FALLBACK_MIN_SECONDS", "3.0")
        timeline = derive_snapshot(raw_spans, []).timeline
        assert timeline[0].duration == pytest.approx(3.0)

    def test_width_floor_from_settings(self, raw_spans: list[dict]) -> None:
        snapshot = derive_snapshot(
            raw_spans, [], settings=EngineSettings(min_width_percent=10.0)
        )
        assert snapshot.waterfall.min_width_percent == 10.0

        rows = {r.id: r for r in waterfall_rows(snapshot.waterfall, expanded={"t1"})}
        assert rows["t1:s1"].width_percent == 10.0
        assert rows["t1:s3"].width_percent == pytest.approx(400 / 1800 * 100)

    def test_width_floor_from_environment(
        self, monkeypatch: pytest.MonkeyPatch, raw_spans: list[dict]
    ) -> None:
        monkeypatch.setenv("VOICE_TRACE_MIN_WIDTH_PERCENT", "10")
        waterfall = derive_snapshot(raw_spans, []).waterfall
        rows = {r.id: r for r in waterfall_rows(waterfall, expanded={"t1"})}
        assert rows["t1:s1"].width_percent == 10.0

    @pytest.mark.asyncio
    async def test_async_matches_sync(
        self, raw_spans: list[dict], raw_records: list[dict]
    ) -> None:
        expected = derive_snapshot(raw_spans, raw_records, version=2)
        assert await derive_snapshot_async(raw_spans, raw_records, version=2) == expected


class TestSessionTraceEngine:
    """Tests for versioned refreshes and playback ticks."""

    def test_initial_state(self) -> None:
        engine = SessionTraceEngine()
        assert engine.version is None
        assert engine.snapshot.status == SnapshotStatus.NO_DATA

    def test_refresh_applies_snapshot(
        self, raw_spans: list[dict], raw_records: list[dict]
    ) -> None:
        engine = SessionTraceEngine()
        snapshot = engine.refresh(raw_spans, raw_records)

        assert engine.version == 1
        assert engine.snapshot is snapshot
        assert engine.synchronizer.entries == snapshot.timeline

    def test_same_version_returns_memoized_snapshot(
        self, raw_spans: list[dict], raw_records: list[dict]
    ) -> None:
        engine = SessionTraceEngine()
        first = engine.refresh(raw_spans, raw_records, version=3)
        second = engine.refresh([], [], version=3)
        assert second is first

    def test_older_version_is_discarded(
        self,
        raw_spans: list[dict],
        raw_records: list[dict],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        engine = SessionTraceEngine()
        current = engine.refresh(raw_spans, raw_records, version=5)

        with caplog.at_level(logging.WARNING):
            result = engine.refresh([], [], version=4)

        assert result is current
        assert engine.version == 5
        assert "stale" in caplog.text

    def test_versions_auto_increment(self, raw_spans: list[dict]) -> None:
        engine = SessionTraceEngine()
        assert engine.refresh(raw_spans).version == 1
        assert engine.refresh(raw_spans, version=10).version == 10
        assert engine.refresh([]).version == 11

    def test_newer_empty_batch_clears_timeline(
        self, raw_spans: list[dict], raw_records: list[dict]
    ) -> None:
        engine = SessionTraceEngine()
        engine.refresh(raw_spans, raw_records)
        snapshot = engine.refresh([], [])

        assert snapshot.status == SnapshotStatus.NO_DATA
        assert engine.synchronizer.entries == []

    def test_tick_does_not_rederive(
        self, raw_spans: list[dict], raw_records: list[dict]
    ) -> None:
        engine = SessionTraceEngine()
        engine.refresh(raw_spans, raw_records)

        with patch("voice_trace.engine.derive_snapshot") as mock_derive:
            directives = engine.tick(3.0, is_playing=True)
            engine.tick(3.5, is_playing=True)
            paused = engine.tick(3.5, is_playing=False)

        mock_derive.assert_not_called()
        assert directives == [
            PlaybackDirective(action=DirectiveAction.SCROLL_TO, turn_id="turn-2-user_turn"),
            PlaybackDirective(action=DirectiveAction.HIGHLIGHT, turn_id="turn-2-user_turn"),
        ]
        assert paused == [PlaybackDirective(action=DirectiveAction.CLEAR_HIGHLIGHT)]

    def test_listener_and_seek(self, raw_spans: list[dict], raw_records: list[dict]) -> None:
        received: list[PlaybackDirective] = []
        engine = SessionTraceEngine(listener=received.append)
        snapshot = engine.refresh(raw_spans, raw_records)

        engine.tick(0.5, is_playing=True)
        assert [d.turn_id for d in received] == ["turn-1-session_management"] * 2
        assert engine.seek_time("turn-3-assistant_turn") == snapshot.timeline[2].start_time
        assert engine.seek_time("missing") is None

    def test_engine_settings(self) -> None:
        settings = EngineSettings(fallback_min_seconds=1.0)
        assert SessionTraceEngine(settings=settings).settings is settings

    @pytest.mark.asyncio
    async def test_refresh_async(self, raw_spans: list[dict], raw_records: list[dict]) -> None:
        engine = SessionTraceEngine()
        snapshot = await engine.refresh_async(raw_spans, raw_records)
        assert snapshot.status == SnapshotStatus.SUCCESS
        assert engine.version == 1

    @pytest.mark.asyncio
    async def test_newer_version_wins_concurrent_refreshes(
        self, raw_spans: list[dict], raw_records: list[dict]
    ) -> None:
        engine = SessionTraceEngine()
        older, newer = await asyncio.gather(
            engine.refresh_async(raw_spans, raw_records, version=1),
            engine.refresh_async([], [], version=2),
        )

        assert engine.version == 2
        assert engine.snapshot.status == SnapshotStatus.NO_DATA
        assert newer.version == 2
        # The slower, older derivation is dropped on completion
        assert older is engine.snapshot
