"""SQL pattern normalization.

Turns raw SQL text into a structural key so that queries differing only
in literal values group together. The transformation is total (any input
yields a string) and idempotent.
"""

from __future__ import annotations

import re
from typing import Any

INVALID_SQL_KEY = "invalid_sql"

_SINGLE_QUOTED = re.compile(r"'(?:[^'\\]|\\.)*'")
_DOUBLE_QUOTED = re.compile(r'"(?:[^"\\]|\\.)*"')
_DECIMAL = re.compile(r"\b\d+\.\d+\b")
_INTEGER = re.compile(r"\b\d+\b")
_PUNCTUATION = re.compile(r"([,()])")
_WHITESPACE = re.compile(r"\s+")


def normalize_sql_pattern(sql: Any) -> str:
    """Normalize SQL into a grouping key.

    String literals become ``{value}``, decimals ``{number}`` and integers
    ``{id}``. Whitespace is collapsed, commas are followed by one space and
    parentheses are surrounded by one space.

    Args:
        sql: Raw SQL text. Non-string or blank input is accepted.

    Returns:
        The normalized key, or ``"invalid_sql"`` for non-string or blank input.
    """
    if not isinstance(sql, str) or not sql.strip():
        return INVALID_SQL_KEY

    key = _SINGLE_QUOTED.sub("{value}", sql)
    key = _DOUBLE_QUOTED.sub("{value}", key)
    # decimals before integers, or "1.5" would become "{id}.{id}"
    key = _DECIMAL.sub("{number}", key)
    key = _INTEGER.sub("{id}", key)

    key = _PUNCTUATION.sub(r" \1 ", key)
    key = _WHITESPACE.sub(" ", key).strip()
    return key.replace(" , ", ", ")
