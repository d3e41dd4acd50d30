"""Engine configuration for the voice trace engine.

Settings are read from ``VOICE_TRACE_*`` environment variables and validated
into a frozen model. Callers may also build ``EngineSettings`` directly.
"""

import logging
import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "VOICE_TRACE_"

# Environment variable -> settings field
_ENV_FIELDS: dict[str, str] = {
    "FALLBACK_MIN_SECONDS": "fallback_min_seconds",
    "FALLBACK_MAX_SECONDS": "fallback_max_seconds",
    "FALLBACK_CHARS_FACTOR": "fallback_chars_factor",
    "MIN_WIDTH_PERCENT": "min_width_percent",
    "STT_IN_TOTAL": "stt_in_total",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class EngineSettings(BaseModel):
    """Tunable constants of the engine."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fallback_min_seconds: float = Field(
        default=2.0, gt=0, description="Smallest estimated turn duration"
    )
    fallback_max_seconds: float = Field(
        default=10.0, gt=0, description="Largest estimated turn duration"
    )
    fallback_chars_factor: float = Field(
        default=0.05, ge=0, description="Seconds of audio per transcript character"
    )
    min_width_percent: float = Field(
        default=0.5, ge=0, le=100, description="Visibility floor for waterfall bars"
    )
    stt_in_total: bool | None = Field(
        default=None,
        description="Explicit STT-in-total flag; None means detect from the agent",
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "EngineSettings":
        if self.fallback_min_seconds > self.fallback_max_seconds:
            raise ValueError(
                "fallback_min_seconds must not exceed fallback_max_seconds"
            )
        return self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "EngineSettings":
        """Build settings from ``VOICE_TRACE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Raises:
            ConfigurationError: If a value cannot be parsed or is out of range.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for suffix, field_name in _ENV_FIELDS.items():
            raw = env.get(f"{ENV_PREFIX}{suffix}")
            if raw is None or raw.strip() == "":
                continue
            if field_name == "stt_in_total":
                values[field_name] = _parse_bool(f"{ENV_PREFIX}{suffix}", raw)
            else:
                values[field_name] = raw.strip()

        try:
            settings = cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid voice trace settings: {e}") from e

        if values:
            logger.debug(f"Loaded engine settings from environment: {values}")
        return settings


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Return the process-wide settings, read once from the environment."""
    return EngineSettings.from_env()


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
