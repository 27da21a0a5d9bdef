"""Helpers for reading JSON out of model replies."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    text = (text or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines[-1].strip() == "```":
            lines = lines[1:-1]
        else:
            lines = lines[1:]
        text = "\n".join(lines)
    return text.strip()


def parse_json_object(text: Optional[str]) -> Optional[dict[str, Any]]:
    """Parse a reply that should be a single JSON object.

    Returns None when the reply is not valid JSON or not an object.
    """
    try:
        data = json.loads(strip_code_fences(text or ""))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON reply: {e}")
        return None
    return data if isinstance(data, dict) else None


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in free text.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        start = text.find("{", start + 1)
    return None


def string_list(value: Any) -> list[str]:
    """Coerce a JSON value to a list of non-blank strings."""
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    items = [str(v).strip() for v in value if v is not None]
    return [item for item in items if item]
