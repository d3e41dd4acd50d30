"""Tests for engine settings."""

import pytest

from voice_trace.config import EngineSettings, get_settings, reset_settings
from voice_trace.exceptions import ConfigurationError, VoiceTraceError


class TestEngineSettings:
    """Tests for EngineSettings construction and environment parsing."""

    def test_defaults(self) -> None:
        settings = EngineSettings()
        assert settings.fallback_min_seconds == 2.0
        assert settings.fallback_max_seconds == 10.0
        assert settings.fallback_chars_factor == 0.05
        assert settings.min_width_percent == 0.5
        assert settings.stt_in_total is None

    def test_from_env_mapping(self) -> None:
        settings = EngineSettings.from_env(
            {
                "VOICE_TRACE_FALLBACK_MIN_SECONDS": "1.5",
                "VOICE_TRACE_FALLBACK_MAX_SECONDS": "8",
                "VOICE_TRACE_MIN_WIDTH_PERCENT": "1",
                "VOICE_TRACE_STT_IN_TOTAL": "yes",
                "UNRELATED": "ignored",
            }
        )
        assert settings.fallback_min_seconds == 1.5
        assert settings.fallback_max_seconds == 8.0
        assert settings.min_width_percent == 1.0
        assert settings.stt_in_total is True

    def test_blank_values_fall_back_to_defaults(self) -> None:
        settings = EngineSettings.from_env({"VOICE_TRACE_FALLBACK_MIN_SECONDS": "  "})
        assert settings.fallback_min_seconds == 2.0

    def test_false_flag(self) -> None:
        settings = EngineSettings.from_env({"VOICE_TRACE_STT_IN_TOTAL": "off"})
        assert settings.stt_in_total is False

    @pytest.mark.parametrize(
        "environ",
        [
            {"VOICE_TRACE_FALLBACK_MIN_SECONDS": "abc"},
            {"VOICE_TRACE_FALLBACK_MIN_SECONDS": "-1"},
            {"VOICE_TRACE_MIN_WIDTH_PERCENT": "150"},
            {"VOICE_TRACE_FALLBACK_MIN_SECONDS": "12"},
            {"VOICE_TRACE_STT_IN_TOTAL": "maybe"},
        ],
    )
    def test_invalid_values(self, environ: dict[str, str]) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            EngineSettings.from_env(environ)
        assert isinstance(exc_info.value, VoiceTraceError)
        assert exc_info.value.user_facing is True

    def test_settings_are_frozen(self) -> None:
        settings = EngineSettings()
        with pytest.raises(ValueError):
            settings.fallback_min_seconds = 1.0  # type: ignore[misc]


class TestGetSettings:
    """Tests for the cached process settings."""

    def test_cached_until_reset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_settings()
        monkeypatch.setenv("VOICE_TRACE_FALLBACK_MAX_SECONDS", "20")
        assert get_settings() is first

        reset_settings()
        assert get_settings().fallback_max_seconds == 20.0
