"""Best-effort extraction of result text and JSON objects from CLI output.

Nothing here raises on malformed input: "not JSON" is an expected
answer, reported through :class:`ParsedJson` or ``None``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ParsedJson:
    """Outcome of a JSON parse attempt."""

    ok: bool
    value: Any = None


def parse_json(text: str) -> ParsedJson:
    """Parse *text* as JSON, reporting failure instead of raising."""
    try:
        return ParsedJson(ok=True, value=json.loads(text))
    except (json.JSONDecodeError, TypeError):
        return ParsedJson(ok=False)


def extract_result_text(raw_output: str) -> str:
    """Return the string ``result`` field of a JSON envelope, else *raw_output*.

    ``claude -p --output-format json`` wraps the answer as
    ``{"type": "result", "result": "...", ...}``.
    """
    parsed = parse_json(raw_output)
    if parsed.ok and isinstance(parsed.value, dict):
        result = parsed.value.get("result")
        if isinstance(result, str) and result:
            return result
    return raw_output


def extract_json_content(text: str) -> str | None:
    """Return the substring from the first ``{`` to the last ``}`` if it parses."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or first >= last:
        return None

    candidate = text[first : last + 1]
    if not parse_json(candidate).ok:
        return None
    return candidate
