"""Pieces every workflow parser uses: payload loading, confidence, and
tolerant field access for the camelCase JSON the prompts ask for.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from lachesis.shared.json_extract import extract_json

logger = logging.getLogger(__name__)

# Decode and shape errors a parser turns into an empty result
PARSE_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def parse_confidence(value: Any, default: Confidence = Confidence.MEDIUM) -> Confidence:
    try:
        return Confidence(str(value).lower())
    except ValueError:
        return default


def load_object(text: str | None) -> dict | None:
    """The response's JSON payload when it is an object, else None."""
    payload = extract_json(text)
    return payload if isinstance(payload, dict) else None


def pick(obj: dict, *keys: str, default: Any = None) -> Any:
    """First present key among *keys* (camelCase and snake_case spellings)."""
    for key in keys:
        if key in obj and obj[key] is not None:
            return obj[key]
    return default


def string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


def require(obj: dict, *keys: str) -> Any:
    """Like ``pick`` but raises KeyError when every spelling is missing."""
    value = pick(obj, *keys)
    if value is None or value == "":
        raise KeyError(keys[0])
    return value


def to_int(value: Any, default: int = 0) -> int:
    """Integer form of a count the model reported, or *default* when it is not a number."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default
