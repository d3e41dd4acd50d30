"""Shared fixtures for voice trace unit tests."""

import pytest

from voice_trace.config import reset_settings


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from cached settings and ambient VOICE_TRACE_* variables."""
    for name in (
        "VOICE_TRACE_FALLBACK_MIN_SECONDS",
        "VOICE_TRACE_FALLBACK_MAX_SECONDS",
        "VOICE_TRACE_FALLBACK_CHARS_FACTOR",
        "VOICE_TRACE_MIN_WIDTH_PERCENT",
        "VOICE_TRACE_STT_IN_TOTAL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
