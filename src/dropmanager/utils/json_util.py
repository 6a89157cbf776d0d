"""
Helpers for pulling JSON out of free-form model replies.

Replies frequently arrive wrapped in markdown fences or with a sentence of
preamble; these helpers strip both before handing the payload to pydantic.
"""
from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```\s*$")


def strip_code_fences(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_RE.sub("", cleaned).strip()
    return cleaned


def _extract_balanced(text: str, opener: str, closer: str) -> str | None:
    start = text.find(opener)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_json_payload(text: str) -> Any:
    """Parse a model reply into JSON.

    Tries the fence-stripped text directly, then the first balanced array or
    object embedded in it. Raises ValueError when nothing parses.
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    pairs = [("[", "]"), ("{", "}")]
    # Whichever container opens first is the outermost one
    pairs.sort(key=lambda pair: cleaned.find(pair[0]) if pair[0] in cleaned else len(cleaned))
    for opener, closer in pairs:
        candidate = _extract_balanced(cleaned, opener, closer)
        if candidate is None:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ValueError("No JSON payload found in response")
