"""Extract-then-repair parsing for JSON produced by the decision oracle.

Models wrap JSON in markdown fences, prepend prose, leave trailing commas,
use single quotes or get cut off mid-object. :func:`parse_llm_json` isolates
the payload and hands it to ``json_repair`` when plain ``json`` rejects it;
it returns ``None`` when nothing usable comes back and every caller owns a
deterministic fallback for that case.
"""

from __future__ import annotations

import json
import re
from typing import Any

import json_repair

from wayfinder.core.logging import get_logger

logger = get_logger("core.llm_json")

FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
TRUNCATION_LINE_RE = re.compile(r"^\s*(?:[⋮…⋯]+|\.{3,})\s*$", re.MULTILINE)
INVISIBLE_RE = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")

_CLOSERS = {"{": "}", "[": "]"}


def _largest_block(text: str) -> str | None:
    """Largest balanced ``{...}`` or ``[...]`` block, string-literal aware."""
    best: str | None = None
    stack: list[str] = []
    start = -1
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and stack:
            in_string = True
        elif ch in _CLOSERS:
            if not stack:
                start = i
            stack.append(_CLOSERS[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
            if not stack and start >= 0:
                block = text[start:i + 1]
                if best is None or len(block) > len(best):
                    best = block

    if best is None and stack and start >= 0:
        # Unterminated: json_repair closes it
        return text[start:]
    return best


def extract_json_candidate(raw: str) -> str:
    text = INVISIBLE_RE.sub("", raw).strip()
    text = TRUNCATION_LINE_RE.sub("", text)
    fenced = FENCE_RE.findall(text)
    if fenced:
        text = max(fenced, key=len).strip()
    block = _largest_block(text)
    return block if block is not None else text


def parse_llm_json(raw: str | None) -> Any | None:
    """Parse oracle output into a JSON value, or ``None`` if it cannot be recovered."""
    if raw is None or not str(raw).strip():
        return None
    candidate = extract_json_candidate(str(raw))

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    if not candidate.startswith(("{", "[")):
        logger.debug("No JSON payload in oracle output: %r", candidate[:200])
        return None

    repaired = json_repair.loads(candidate)
    if repaired == "" or repaired is None:
        logger.debug("JSON repair failed | candidate=%r", candidate[:200])
        return None
    return repaired


def parse_llm_object(raw: str | None) -> dict[str, Any] | None:
    """Like :func:`parse_llm_json` but only accepts a JSON object."""
    value = parse_llm_json(raw)
    return value if isinstance(value, dict) else None
