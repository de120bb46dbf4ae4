"""Shared utilities for parsing and coercing LLM responses."""

from __future__ import annotations

import json
import math
from typing import Any, List


def parse_llm_json(raw: str) -> dict:
    """Parse JSON from an LLM response, handling code fences and preamble text.

    Tries in order:
    1. Strip markdown code fences, then json.loads
    2. Extract substring between first '{' and last '}', then json.loads
    3. Return empty dict

    Anything that parses to a non-object (a list, a bare number) counts as
    unparseable.
    """
    if not raw:
        return {}

    text = raw.strip()
    if "```" in text:
        lines = [l for l in text.split("\n") if not l.strip().startswith("```")]
        text = "\n".join(lines)

    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else {}
    except json.JSONDecodeError:
        pass

    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start >= 0 and end > start:
        try:
            data = json.loads(raw[start:end])
            return data if isinstance(data, dict) else {}
        except json.JSONDecodeError:
            pass

    return {}


def clamp01(value: Any) -> float:
    """Coerce to a float in [0, 1]; NaN and garbage become 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(1.0, number))


def coerce_str_list(value: Any, limit: int = 10) -> List[str]:
    """Keep non-empty string forms of list items, capped at limit."""
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v not in (None, "")][:limit]
