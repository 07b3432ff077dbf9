"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import re

_LABEL_PREFIX = re.compile(
    r"^\s*(?:rewritten\s+query|search\s+query|query)\s*[:\-]\s*",
    re.IGNORECASE,
)
_QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"), ("`", "`"))


def strip_code_fences(raw: str) -> str:
    """Remove markdown code fence lines from an LLM response."""
    if not raw.lstrip().startswith("```"):
        return raw
    lines = raw.split("\n")
    lines = [l for l in lines if not l.strip().startswith("```")]
    return "\n".join(lines)


def parse_llm_text(raw: str) -> str:
    """Extract a single-line answer from an LLM response.

    Tries in order:
    1. Strip markdown code fences
    2. Take the first non-empty line
    3. Drop a leading "Query:" style label
    4. Drop one pair of wrapping quotes
    Returns an empty string when nothing usable is left.
    """
    if not raw:
        return ""

    text = strip_code_fences(raw)
    line = next((l.strip() for l in text.splitlines() if l.strip()), "")
    if not line:
        return ""

    line = _LABEL_PREFIX.sub("", line, count=1).strip()

    for open_q, close_q in _QUOTE_PAIRS:
        if len(line) >= 2 and line.startswith(open_q) and line.endswith(close_q):
            line = line[1:-1].strip()
            break

    return line
