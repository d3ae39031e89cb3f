"""
Token estimation and snippet utilities.
"""

from __future__ import annotations

import math
import re


_WS = re.compile(r"\s+")


def collapse_whitespace(text: str | None) -> str:
    return _WS.sub(" ", text or "").strip()


def estimate_tokens(text: str | None) -> int:
    normalized = collapse_whitespace(text)
    if not normalized:
        return 1
    return max(1, math.ceil(len(normalized) / 4))


def trim_snippet(text: str | None, max_chars: int) -> str:
    normalized = collapse_whitespace(text)
    if len(normalized) <= max_chars:
        return normalized
    return normalized[: max(max_chars - 3, 1)].rstrip() + "..."


def summarize_inline(text: str | None, max_chars: int = 140) -> str:
    normalized = collapse_whitespace(text)
    if not normalized:
        return "-"
    return trim_snippet(normalized, max_chars)


def normalize_text(text: str | None) -> str:
    return collapse_whitespace(text).lower()
