"""Display strings for durations and instants."""

from datetime import datetime, timezone


def format_duration_ms(ms: float) -> str:
    """``"850ms"`` below one second, else ``"1.25s"``."""
    if ms < 1000:
        return f"{ms:.0f}ms"
    return f"{ms / 1000:.2f}s"


def format_latency(seconds: float) -> str:
    """Latency in seconds as ``"850ms"`` or ``"1.2s"``; ``"N/A"`` when not positive."""
    if seconds <= 0:
        return "N/A"
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    return f"{seconds:.1f}s"


def format_call_duration(seconds: float) -> str:
    """Call length as ``"m:ss"``, or ``"42s"`` below a minute."""
    total = max(int(seconds), 0)
    minutes, secs = divmod(total, 60)
    if minutes > 0:
        return f"{minutes}:{secs:02d}"
    return f"{secs}s"


def format_clock_time(timestamp: float) -> str:
    """``HH:MM:SS`` (UTC) of an epoch timestamp; empty for a missing one."""
    if not timestamp:
        return ""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%H:%M:%S")


def format_playback_position(seconds: float) -> str:
    """Player position as ``"m:ss"``."""
    total = max(int(seconds), 0)
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"
