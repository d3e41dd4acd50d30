"""Session engine: versioned derivation of everything a session view needs.

A refresh takes one batch of raw spans and per-turn records and derives a
``SessionSnapshot``. Each refresh carries a monotonically increasing input
version; a refresh for the version already applied returns the memoized
snapshot and a refresh older than the applied version is discarded. The
async variant yields to the event loop between stages and drops its result
if a newer version was applied while it ran.

Playback ticks only consult the synchronizer and never trigger a
re-derivation.
"""

import asyncio
import logging
from collections.abc import Generator, Iterable, Mapping
from typing import Any

from .analysis import (
    PlaybackSynchronizer,
    aggregate_latency,
    build_span_hierarchy,
    build_timeline,
    build_waterfall,
    classify_turn_status,
    detect_platform,
    extract_flagged_turn_ids,
    filter_and_order_records,
    group_traces,
    normalize_spans,
    normalize_turn_records,
    resolve_stt_in_total,
    segment_turns,
    sources_from_records,
    sources_from_turns,
    summarize_turns,
)
from .analysis.timeline import DirectiveListener
from .config import EngineSettings, get_settings
from .schema import PlaybackDirective, SessionSnapshot, SnapshotStatus

logger = logging.getLogger(__name__)


def _derivation(
    raw_spans: Iterable[Any] | None,
    raw_records: Iterable[Any] | None,
    version: int,
    settings: EngineSettings,
    call_metadata: Mapping[str, Any] | str | None = None,
    agent: Mapping[str, Any] | None = None,
    stt_in_total: bool | None = None,
) -> Generator[str, None, SessionSnapshot]:
    """Derive a snapshot stage by stage, yielding the name of each finished stage.

    The generator's return value is the snapshot. Drivers decide what to do
    between stages: nothing for a synchronous refresh, yield to the event
    loop for an async one.
    """
    spans = normalize_spans(list(raw_spans or ()))
    records = normalize_turn_records(list(raw_records or ()))
    yield "normalize"

    if not spans and not records:
        logger.info(f"No spans or records for version {version}")
        return SessionSnapshot(version=version, status=SnapshotStatus.NO_DATA)

    platform = detect_platform(agent)
    explicit = stt_in_total if stt_in_total is not None else settings.stt_in_total
    include_stt = resolve_stt_in_total(platform, explicit)

    hierarchy = build_span_hierarchy(spans)
    yield "hierarchy"

    turns = segment_turns(hierarchy)
    yield "turns"

    latency = aggregate_latency(records, stt_in_total=include_stt)
    yield "latency"

    waterfall = build_waterfall(
        spans, group_traces(spans), min_width_percent=settings.min_width_percent
    )
    yield "waterfall"

    ordered = filter_and_order_records(records)
    if turns:
        sources = sources_from_turns(turns, ordered)
    else:
        sources = sources_from_records(ordered)
    timeline = build_timeline(sources, stt_in_total=include_stt, settings=settings)
    yield "timeline"

    flagged = extract_flagged_turn_ids(call_metadata, records)
    statuses = {
        record.turn_id: classify_turn_status(record, flagged).value for record in ordered
    }

    return SessionSnapshot(
        version=version,
        status=SnapshotStatus.SUCCESS,
        spans=spans,
        hierarchy=hierarchy,
        turns=turns,
        records=ordered,
        latency=latency,
        waterfall=waterfall,
        timeline=timeline,
        platform=platform,
        metadata={
            "stt_in_total": include_stt,
            "summary": summarize_turns(turns),
            "flagged_turn_ids": sorted(flagged),
            "turn_statuses": statuses,
        },
    )


def derive_snapshot(
    raw_spans: Iterable[Any] | None,
    raw_records: Iterable[Any] | None = (),
    version: int = 0,
    settings: EngineSettings | None = None,
    **options: Any,
) -> SessionSnapshot:
    """Derive a snapshot synchronously, without any engine state."""
    steps = _derivation(
        raw_spans, raw_records, version, settings or get_settings(), **options
    )
    while True:
        try:
            next(steps)
        except StopIteration as done:
            return done.value


async def derive_snapshot_async(
    raw_spans: Iterable[Any] | None,
    raw_records: Iterable[Any] | None = (),
    version: int = 0,
    settings: EngineSettings | None = None,
    **options: Any,
) -> SessionSnapshot:
    """Derive a snapshot cooperatively, yielding to the event loop between stages."""
    steps = _derivation(
        raw_spans, raw_records, version, settings or get_settings(), **options
    )
    while True:
        try:
            stage = next(steps)
        except StopIteration as done:
            return done.value
        logger.debug(f"Version {version}: finished stage '{stage}'")
        await asyncio.sleep(0)


class SessionTraceEngine:
    """Holds the applied snapshot and the playback synchronizer of one session."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        listener: DirectiveListener | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._synchronizer = PlaybackSynchronizer(listener=listener)
        self._snapshot = SessionSnapshot()
        self._applied_version: int | None = None
        self._issued_version = 0

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def version(self) -> int | None:
        """Version of the applied snapshot, None before the first refresh."""
        return self._applied_version

    @property
    def synchronizer(self) -> PlaybackSynchronizer:
        return self._synchronizer

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def _claim_version(self, version: int | None) -> int:
        if version is None:
            version = self._issued_version + 1
        self._issued_version = max(self._issued_version, version)
        return version

    def _cached(self, version: int) -> SessionSnapshot | None:
        """Snapshot to return instead of deriving, if the version is not new."""
        applied = self._applied_version
        if applied is None:
            return None
        if version == applied:
            logger.debug(f"Version {version} already applied, returning memoized snapshot")
            return self._snapshot
        if version < applied:
            logger.warning(
                f"Discarding stale refresh: version {version} is older than applied {applied}"
            )
            return self._snapshot
        return None

    def _apply(self, snapshot: SessionSnapshot) -> SessionSnapshot:
        self._snapshot = snapshot
        self._applied_version = snapshot.version
        self._synchronizer.set_entries(snapshot.timeline)
        logger.info(
            f"Applied session snapshot version {snapshot.version} "
            f"({snapshot.status.value}, {len(snapshot.spans)} spans, {len(snapshot.turns)} turns)"
        )
        return snapshot

    def refresh(
        self,
        raw_spans: Iterable[Any] | None,
        raw_records: Iterable[Any] | None = (),
        version: int | None = None,
        call_metadata: Mapping[str, Any] | str | None = None,
        agent: Mapping[str, Any] | None = None,
        stt_in_total: bool | None = None,
    ) -> SessionSnapshot:
        """Derive and apply a snapshot for a new input batch.

        Args:
            raw_spans: Raw span records from the span source.
            raw_records: Raw per-turn transcript/metric rows.
            version: Input version; the next one is used when omitted.
            call_metadata: Call metadata carrying bug-flagged turns.
            agent: Agent configuration used for platform detection.
            stt_in_total: Explicit STT flag, overrides platform detection.

        Returns:
            The applied snapshot, which is the current one when ``version``
            is not newer than the applied version.
        """
        version = self._claim_version(version)
        cached = self._cached(version)
        if cached is not None:
            return cached

        snapshot = derive_snapshot(
            raw_spans,
            raw_records,
            version,
            self._settings,
            call_metadata=call_metadata,
            agent=agent,
            stt_in_total=stt_in_total,
        )
        return self._apply(snapshot)

    async def refresh_async(
        self,
        raw_spans: Iterable[Any] | None,
        raw_records: Iterable[Any] | None = (),
        version: int | None = None,
        call_metadata: Mapping[str, Any] | str | None = None,
        agent: Mapping[str, Any] | None = None,
        stt_in_total: bool | None = None,
    ) -> SessionSnapshot:
        """Cooperative ``refresh``; newer versions applied meanwhile win."""
        version = self._claim_version(version)
        cached = self._cached(version)
        if cached is not None:
            return cached

        snapshot = await derive_snapshot_async(
            raw_spans,
            raw_records,
            version,
            self._settings,
            call_metadata=call_metadata,
            agent=agent,
            stt_in_total=stt_in_total,
        )

        if self._applied_version is not None and version <= self._applied_version:
            logger.warning(
                f"Discarding stale derivation for version {version}; "
                f"version {self._applied_version} was applied meanwhile"
            )
            return self._snapshot
        return self._apply(snapshot)

    def tick(self, current_time: float, is_playing: bool) -> list[PlaybackDirective]:
        """Forward a playback tick to the synchronizer."""
        return self._synchronizer.update(current_time, is_playing)

    def seek_time(self, turn_id: str) -> float | None:
        """Playback position of a turn, for click-to-seek."""
        return self._synchronizer.seek_time(turn_id)
