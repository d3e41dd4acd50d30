"""Playback timeline projection and synchronization.

Turns are laid end to end on a synthetic cumulative time axis built from
measured latency and audio durations. The ``PlaybackSynchronizer`` maps the
audio player's current position onto that axis and tells the presentation
layer when to scroll to and highlight a different turn.

Invariants:
- Adjacent entries touch: ``entries[i].end_time == entries[i + 1].start_time``.
- Every entry has a positive duration, using a transcript-length estimate
  when nothing was measured.
- While playback is paused no turn is active.
"""

import logging
from collections.abc import Callable, Iterable, Sequence

from voice_trace.common import engine_stage
from voice_trace.config import EngineSettings, get_settings
from voice_trace.schema import (
    DirectiveAction,
    PlaybackDirective,
    TimelineEntry,
    TimelineSource,
    Turn,
    TurnRecord,
)

from .latency import turn_total_latency

logger = logging.getLogger(__name__)

DirectiveListener = Callable[[PlaybackDirective], None]


def sources_from_records(records: Iterable[TurnRecord]) -> list[TimelineSource]:
    """One timeline source per metric record, keyed by its turn id.

    Records without a turn id or record id are keyed ``record-<index>``.
    """
    return [
        TimelineSource(
            turn_id=record.turn_id or record.id or f"record-{index}", record=record
        )
        for index, record in enumerate(records)
    ]


def sources_from_turns(
    turns: Iterable[Turn], records: Iterable[TurnRecord] = ()
) -> list[TimelineSource]:
    """One timeline source per segmented turn.

    A turn is paired with the record whose ``turn_id`` matches a ``turn_id``
    attribute on one of the turn's spans. Unpaired turns get no record and
    therefore an estimated duration.
    """
    by_turn_id: dict[str, TurnRecord] = {}
    for record in records:
        if record.turn_id:
            by_turn_id.setdefault(record.turn_id, record)

    sources: list[TimelineSource] = []
    for turn in turns:
        record = None
        for node in turn.spans:
            key = node.span.attributes.get("turn_id")
            if key is not None and str(key) in by_turn_id:
                record = by_turn_id[str(key)]
                break
        sources.append(TimelineSource(turn_id=turn.id, record=record))
    return sources


def measured_audio_duration(record: TurnRecord | None) -> float:
    """Best available measured duration signal of a turn, in seconds.

    Tried in order: trace duration, call duration, then the TTS audio
    duration, duration and length fields.
    """
    if record is None:
        return 0.0
    if record.trace_duration_ms:
        return record.trace_duration_ms / 1000
    if record.call_duration_seconds:
        return record.call_duration_seconds
    tts = record.tts
    if tts is not None:
        for value in (tts.audio_duration, tts.duration, tts.length):
            if value:
                return value
    return 0.0


def estimate_duration(transcript_chars: int, settings: EngineSettings) -> float:
    """Transcript-length estimate used when a turn has no measurements."""
    estimate = transcript_chars * settings.fallback_chars_factor
    return max(
        settings.fallback_min_seconds, min(settings.fallback_max_seconds, estimate)
    )


@engine_stage("build_timeline")
def build_timeline(
    sources: Sequence[TimelineSource],
    stt_in_total: bool = False,
    settings: EngineSettings | None = None,
) -> list[TimelineEntry]:
    """Lay sources end to end on the cumulative playback axis.

    Args:
        sources: Items in playback order.
        stt_in_total: Whether STT time is part of a turn's latency.
        settings: Fallback estimate bounds; process settings when omitted.

    Returns:
        One entry per source, in order.
    """
    settings = settings or get_settings()
    entries: list[TimelineEntry] = []
    cumulative = 0.0

    for index, source in enumerate(sources):
        record = source.record
        latency = turn_total_latency(record, stt_in_total)
        audio_duration = measured_audio_duration(record)

        # The first turn has no preceding user utterance
        extra = 0.0
        if index > 0 and record is not None:
            if record.stt is not None and record.stt.audio_duration:
                extra += record.stt.audio_duration
            if record.tts is not None and record.tts.audio_duration:
                extra += record.tts.audio_duration

        duration = latency + audio_duration + extra
        estimated = duration == 0
        if estimated:
            chars = record.transcript_chars if record is not None else 0
            duration = estimate_duration(chars, settings)
            logger.warning(
                f"Fallback duration {duration:.2f}s for turn {source.turn_id}: "
                f"no latency or audio measurements"
            )

        entries.append(
            TimelineEntry(
                turn_id=source.turn_id,
                index=index,
                start_time=cumulative,
                end_time=cumulative + duration,
                latency=latency,
                audio_duration=audio_duration,
                estimated=estimated,
            )
        )
        cumulative += duration

    return entries


def find_active_entry(
    entries: Sequence[TimelineEntry], current_time: float
) -> TimelineEntry | None:
    """First entry whose closed interval contains ``current_time``."""
    for entry in entries:
        if entry.start_time <= current_time <= entry.end_time:
            return entry
    return None


class PlaybackSynchronizer:
    """Keeps the highlighted turn in step with audio playback.

    Call ``update`` on every playback tick. It is a linear scan over the
    entries and never touches the hierarchy, turns or statistics. Directives
    are returned and, when a listener is set, also passed to it.
    """

    def __init__(
        self,
        entries: Sequence[TimelineEntry] = (),
        listener: DirectiveListener | None = None,
    ) -> None:
        self._entries: list[TimelineEntry] = list(entries)
        self._active_turn_id: str | None = None
        self._listener = listener

    @property
    def entries(self) -> list[TimelineEntry]:
        return list(self._entries)

    @property
    def active_turn_id(self) -> str | None:
        return self._active_turn_id

    @property
    def active_entry(self) -> TimelineEntry | None:
        if self._active_turn_id is None:
            return None
        return self._entry_for(self._active_turn_id)

    def set_listener(self, listener: DirectiveListener | None) -> None:
        self._listener = listener

    def set_entries(self, entries: Sequence[TimelineEntry]) -> list[PlaybackDirective]:
        """Replace the timeline after a refresh.

        The active turn survives only if it still exists in the new entries.
        """
        self._entries = list(entries)
        if self._active_turn_id is not None and self.active_entry is None:
            logger.debug(f"Active turn {self._active_turn_id} no longer on the timeline")
            return self._clear()
        return []

    def update(self, current_time: float, is_playing: bool) -> list[PlaybackDirective]:
        """Apply one playback tick.

        Paused: the active turn is cleared whatever the position.
        Playing without a matching entry: state is left unchanged.
        Playing into a different entry: one scroll and one highlight.
        """
        if not is_playing:
            return self._clear()

        entry = find_active_entry(self._entries, current_time)
        if entry is None or entry.turn_id == self._active_turn_id:
            return []

        self._active_turn_id = entry.turn_id
        logger.debug(f"Playback at {current_time:.2f}s entered turn {entry.turn_id}")
        return self._emit(
            PlaybackDirective(action=DirectiveAction.SCROLL_TO, turn_id=entry.turn_id),
            PlaybackDirective(action=DirectiveAction.HIGHLIGHT, turn_id=entry.turn_id),
        )

    def progress(self, current_time: float) -> float:
        """Fraction (0..1) of the active entry already played."""
        entry = self.active_entry
        if entry is None or entry.duration <= 0:
            return 0.0
        elapsed = current_time - entry.start_time
        return max(0.0, min(1.0, elapsed / entry.duration))

    def seek_time(self, turn_id: str) -> float | None:
        """Playback position at which ``turn_id`` starts, for click-to-seek."""
        entry = self._entry_for(turn_id)
        return entry.start_time if entry is not None else None

    def _entry_for(self, turn_id: str) -> TimelineEntry | None:
        return next((e for e in self._entries if e.turn_id == turn_id), None)

    def _clear(self) -> list[PlaybackDirective]:
        if self._active_turn_id is None:
            return []
        self._active_turn_id = None
        return self._emit(PlaybackDirective(action=DirectiveAction.CLEAR_HIGHLIGHT))

    def _emit(self, *directives: PlaybackDirective) -> list[PlaybackDirective]:
        if self._listener is not None:
            for directive in directives:
                self._listener(directive)
        return list(directives)
