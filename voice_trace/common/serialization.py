"""Serialization utilities for span attribute bags."""

import json
import logging
import math
from collections.abc import Mapping
from typing import Any

from pydantic import JsonValue

logger = logging.getLogger(__name__)


def json_default(obj: Any) -> Any:
    """JSON default handler for values producers put into attribute bags.

    Handles datetimes, byte strings, enums and objects exposing ``to_dict``
    or ``model_dump``; anything else becomes its string representation.
    """
    from datetime import timedelta
    from enum import Enum

    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, bytes | bytearray):
        return obj.decode("utf-8", errors="replace")

    try:
        return str(obj)
    except Exception:
        return "<Unserializable Object>"


def normalize_value(obj: Any) -> JsonValue:
    """Recursively converts an arbitrary value to a JSON value.

    The result is one of str/int/float/bool/None, a list of JSON values or
    a string-keyed dict of JSON values. Non-finite floats become None.
    """
    if obj is None:
        return None

    if isinstance(obj, bool | str | int):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None

    if isinstance(obj, Mapping):
        return {str(k): normalize_value(v) for k, v in obj.items()}
    if isinstance(obj, list | tuple | set | frozenset):
        return [normalize_value(i) for i in obj]

    res = json_default(obj)
    if isinstance(res, Mapping | list):
        return normalize_value(res)
    return res


def parse_attributes(raw: Any) -> dict[str, JsonValue]:
    """Parse an attribute bag given as a mapping or a JSON string.

    Anything that is not a mapping (after JSON decoding) yields an empty bag.
    """
    if raw is None:
        return {}
    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.debug("Ignoring attribute bag that is not valid JSON")
            return {}
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): normalize_value(v) for k, v in raw.items()}
