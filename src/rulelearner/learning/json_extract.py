"""Tolerant JSON extraction from free-form model replies.

Model replies may be bare JSON, JSON inside a fenced markdown block, or
JSON surrounded by prose. ``extract_json`` tries each form in turn and
reports which tier succeeded. It never raises.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")


@dataclass(frozen=True)
class ParseResult:
    """Tagged parse outcome: ``value`` when ``ok``, else ``reason``."""

    ok: bool
    value: Any = None
    reason: str = ""
    tier: str | None = None
    """Which strategy succeeded: direct, fenced or brace_span."""


def _loads(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None


def extract_json(text: Any) -> ParseResult:
    """Parse JSON from a model reply.

    Tiers, in order: the whole text, each fenced code block, then the
    largest ``{...}`` span.

    Args:
        text: The raw reply.

    Returns:
        ParseResult with ``ok=True`` and the decoded value, or ``ok=False``
        and a reason.
    """
    if not isinstance(text, str) or not text.strip():
        return ParseResult(ok=False, reason="empty reply")

    stripped = text.strip()
    ok, value = _loads(stripped)
    if ok:
        return ParseResult(ok=True, value=value, tier="direct")

    for block in _FENCED_BLOCK.findall(stripped):
        ok, value = _loads(block)
        if ok:
            return ParseResult(ok=True, value=value, tier="fenced")

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        ok, value = _loads(stripped[start:end + 1])
        if ok:
            return ParseResult(ok=True, value=value, tier="brace_span")
        return ParseResult(ok=False, reason="brace span is not valid JSON")

    return ParseResult(ok=False, reason="no JSON object found")
