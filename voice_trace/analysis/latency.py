"""Latency aggregation across conversation turns.

Collects per-stage samples (STT, LLM time-to-first-token, TTS
time-to-first-byte, end-of-utterance delay) and three composite measures
from per-turn records, then reduces each dimension to ``Stats``.

All values are seconds. A stage value only counts as a sample when it is
present and non-zero; a missing sub-record simply contributes nothing.
"""

import logging
import math
import statistics
from collections.abc import Sequence
from typing import Literal

from voice_trace.common import engine_stage
from voice_trace.exceptions import InvalidPercentileError
from voice_trace.schema import (
    LatencyRating,
    LatencyReport,
    LatencySamples,
    Stats,
    TurnRecord,
)

logger = logging.getLogger(__name__)

LatencyKind = Literal["stt", "llm", "tts", "eou", "total", "e2e"]

# (good, fair) upper bounds in seconds; anything above fair is poor
LATENCY_THRESHOLDS: dict[str, tuple[float, float]] = {
    "stt": (1.0, 2.0),
    "llm": (1.0, 3.0),
    "tts": (1.0, 2.0),
    "eou": (0.5, 1.5),
    "total": (3.0, 6.0),
    "e2e": (4.0, 8.0),
}


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of ascending ``sorted_values``.

    Uses index ``ceil(p/100 * n) - 1`` clamped to ``[0, n-1]``.

    Raises:
        InvalidPercentileError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise InvalidPercentileError(p)
    n = len(sorted_values)
    if n == 0:
        return 0.0
    index = math.ceil(p / 100 * n) - 1
    return sorted_values[max(0, min(index, n - 1))]


def compute_stats(values: Sequence[float]) -> Stats:
    """Reduce a sample set to ``Stats``; an empty set yields all zeros."""
    if not values:
        return Stats()

    ordered = sorted(values)
    return Stats(
        avg=statistics.fmean(ordered),
        min=ordered[0],
        max=ordered[-1],
        count=len(ordered),
        p50=percentile(ordered, 50),
        p75=percentile(ordered, 75),
    )


def _stt_duration(record: TurnRecord) -> float:
    return (record.stt.duration or 0.0) if record.stt else 0.0


def _llm_ttft(record: TurnRecord) -> float:
    return (record.llm.ttft or 0.0) if record.llm else 0.0


def _tts_time(record: TurnRecord) -> float:
    if record.tts is None:
        return 0.0
    return (record.tts.ttfb or 0.0) + (record.tts.duration or 0.0)


def _eou_delay(record: TurnRecord) -> float:
    return (record.eou.end_of_utterance_delay or 0.0) if record.eou else 0.0


def turn_total_latency(record: TurnRecord | None, stt_in_total: bool) -> float:
    """Total measured latency of one turn.

    ``llm.ttft + tts.ttfb + tts.duration``, plus ``stt.duration`` when the
    platform counts STT time. Missing stages contribute 0.
    """
    if record is None:
        return 0.0
    stt_term = _stt_duration(record) if stt_in_total else 0.0
    return _llm_ttft(record) + _tts_time(record) + stt_term


def pipeline_duration(record: TurnRecord, stt_in_total: bool) -> float:
    """Head-latency pipeline of one turn: STT, EOU, LLM TTFT and TTS TTFB."""
    total = _eou_delay(record) + _llm_ttft(record)
    if record.tts is not None:
        total += record.tts.ttfb or 0.0
    if stt_in_total:
        total += _stt_duration(record)
    return total


def pipeline_formula(record: TurnRecord, stt_in_total: bool) -> str:
    """Label of the stages included in ``pipeline_duration``, e.g. ``"EOU + LLM"``."""
    parts: list[str] = []
    if stt_in_total and _stt_duration(record):
        parts.append("STT")
    if _eou_delay(record):
        parts.append("EOU")
    if _llm_ttft(record):
        parts.append("LLM")
    if record.tts is not None and record.tts.ttfb:
        parts.append("TTS")
    return " + ".join(parts)


def rate_latency(value: float, kind: LatencyKind) -> LatencyRating:
    """Rate a latency value against the thresholds for ``kind``."""
    good, fair = LATENCY_THRESHOLDS[kind]
    if value <= good:
        return LatencyRating.GOOD
    if value <= fair:
        return LatencyRating.FAIR
    return LatencyRating.POOR


def collect_samples(
    records: Sequence[TurnRecord], stt_in_total: bool
) -> LatencySamples:
    """Gather raw samples for every latency dimension."""
    stt: list[float] = []
    llm: list[float] = []
    tts: list[float] = []
    eou: list[float] = []
    agent_response: list[float] = []
    total_turn: list[float] = []
    end_to_end: list[float] = []

    for record in records:
        stt_duration = _stt_duration(record)
        ttft = _llm_ttft(record)
        eou_delay = _eou_delay(record)

        if stt_duration:
            stt.append(stt_duration)
        if ttft:
            llm.append(ttft)
        if record.tts is not None and record.tts.ttfb:
            tts.append(record.tts.ttfb)
        if eou_delay:
            eou.append(eou_delay)

        if record.tts is None:
            continue

        stt_term = stt_duration if stt_in_total else 0.0
        tts_time = _tts_time(record)

        if record.user_transcript and record.agent_response and ttft:
            agent_response.append(ttft + tts_time)

        total = ttft + tts_time + stt_term
        if total > 0:
            total_turn.append(total)

        if eou_delay and ttft:
            end_to_end.append(eou_delay + stt_term + ttft + tts_time)

    return LatencySamples(
        stt=stt,
        llm=llm,
        tts=tts,
        eou=eou,
        agent_response=agent_response,
        total_turn=total_turn,
        end_to_end=end_to_end,
    )


@engine_stage("aggregate_latency")
def aggregate_latency(
    records: Sequence[TurnRecord], stt_in_total: bool = False
) -> LatencyReport:
    """Compute latency statistics for a session.

    Args:
        records: Per-turn metric records.
        stt_in_total: Whether STT time is added to the composite measures.

    Returns:
        Stats per dimension plus the headline p50 values.
    """
    samples = collect_samples(records, stt_in_total)
    agent_response = compute_stats(samples.agent_response)
    total_turn = compute_stats(samples.total_turn)
    end_to_end = compute_stats(samples.end_to_end)

    return LatencyReport(
        total_turns=len(records),
        stt_in_total=stt_in_total,
        stt=compute_stats(samples.stt),
        llm=compute_stats(samples.llm),
        tts=compute_stats(samples.tts),
        eou=compute_stats(samples.eou),
        agent_response=agent_response,
        total_turn=total_turn,
        end_to_end=end_to_end,
        p50_total_latency=total_turn.p50,
        p50_agent_response_time=agent_response.p50,
        p50_end_to_end_latency=end_to_end.p50,
        samples=samples,
    )
