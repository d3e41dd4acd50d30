"""Voice platform detection.

Some platforms report speech-to-text time as part of the turn, others bill
and measure it separately. The platform decides whether STT latency is
added to the composite latency measures.
"""

import logging
from collections.abc import Mapping
from typing import Any

from voice_trace.schema import Platform

logger = logging.getLogger(__name__)


def _get_path(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def detect_platform(agent: Mapping[str, Any] | None) -> Platform:
    """Infer the platform from an agent configuration record.

    An agent is a Vapi agent when its type says so, when it carries a Vapi
    assistant id in its configuration, or when both encrypted Vapi keys are
    stored. Any other agent is a generic voice agent.
    """
    if not agent:
        return Platform.UNKNOWN

    has_vapi_keys = bool(
        agent.get("vapi_api_key_encrypted") and agent.get("vapi_project_key_encrypted")
    )
    has_vapi_config = bool(_get_path(agent, "configuration", "vapi", "assistantId"))
    if agent.get("agent_type") == "vapi" or has_vapi_config or has_vapi_keys:
        return Platform.VAPI
    return Platform.VOICE


def stt_in_total(platform: Platform) -> bool:
    """Whether STT latency counts toward total and end-to-end latency."""
    return platform == Platform.VAPI


def resolve_stt_in_total(
    platform: Platform, explicit: bool | None = None
) -> bool:
    """Explicit caller flag if given, otherwise derived from ``platform``."""
    if explicit is not None:
        if explicit != stt_in_total(platform):
            logger.debug(
                f"Explicit stt_in_total={explicit} overrides detected platform {platform.value}"
            )
        return explicit
    return stt_in_total(platform)
