"""Common utilities shared by the engine stages."""

from .decorators import engine_stage
from .serialization import json_default, normalize_value, parse_attributes

__all__ = [
    "engine_stage",
    "json_default",
    "normalize_value",
    "parse_attributes",
]
