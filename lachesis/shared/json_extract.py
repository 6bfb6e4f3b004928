"""Pull JSON out of model responses.

Models often wrap JSON in a Markdown fence, and the JSON itself can
contain triple backticks (a task named "Detect ```kos``` blocks"), so
the closing fence is searched from the end rather than matched lazily.
"""
from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

_EMBEDDED_FENCE = re.compile(r"```(?:json|JSON)\s*\n(?P<body>[\s\S]*?)\n```")


def strip_code_fence(text: str) -> str:
    """Return the body of a leading ``` fence, or *text* unchanged."""
    body = text.strip()
    if not body.startswith("```"):
        return body
    newline = body.find("\n")
    if newline == -1:
        return body
    lines = body[newline + 1:].split("\n")
    for index in range(len(lines) - 1, -1, -1):
        if lines[index].strip() == "```":
            lines = lines[:index]
            break
    return "\n".join(lines).strip()


def _loads(text: str) -> object | None:
    if not text or text[0] not in "{[":
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def extract_json(text: str | None) -> object | None:
    """Decode the JSON payload of a model response, or None.

    Tries, in order: the bare text, the body of a leading fence, and a
    ```json fence anywhere in the text (for responses with prose
    before the block).
    """
    if not text:
        return None
    stripped = text.strip()
    parsed = _loads(stripped)
    if parsed is not None:
        return parsed
    parsed = _loads(strip_code_fence(stripped))
    if parsed is not None:
        return parsed
    match = _EMBEDDED_FENCE.search(stripped)
    if match:
        parsed = _loads(match.group("body").strip())
        if parsed is not None:
            return parsed
    logger.debug("extract_json: no JSON payload found (%d chars)", len(stripped))
    return None
