"""
Recover segment lists from loosely formatted backend output.

Servers and LLM-style backends sometimes wrap JSON in Markdown fences, cut
the array off mid-object, or return numbers as strings. We take whatever
well-formed {start, end, text} objects can be found and drop the rest.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from lingosub.asr.base import RawSegment

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def robust_parse_json(payload: str) -> list[Any]:
    """
    Parse a JSON array of objects, recovering what we can:
    1. plain json.loads (a single object is wrapped in a list);
    2. cut after the last '}' and make sure it is wrapped in [...];
    3. pull out every balanced {...} that has "start" and "text".
    Returns [] when nothing usable is found.
    """
    clean = _FENCE_RE.sub("", payload or "").strip()
    if not clean:
        return []
    try:
        data = json.loads(clean)
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        return []
    except json.JSONDecodeError:
        pass

    last = clean.rfind("}")
    if last == -1:
        return []
    recovered = clean[: last + 1].strip()
    if not recovered.startswith("["):
        recovered = "[" + recovered
    if not recovered.endswith("]"):
        recovered = recovered + "]"
    try:
        data = json.loads(recovered)
        if isinstance(data, list):
            return data
    except json.JSONDecodeError:
        pass

    objects: list[Any] = []
    depth = 0
    start = -1
    for i, ch in enumerate(clean):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start != -1:
                try:
                    obj = json.loads(clean[start : i + 1])
                except json.JSONDecodeError:
                    obj = None
                if isinstance(obj, dict) and "start" in obj and "text" in obj:
                    objects.append(obj)
                start = -1
    if objects:
        logger.debug("Recovered %d segment object(s) from malformed JSON", len(objects))
    return objects


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if f != f or f in (float("inf"), float("-inf")):
        return None
    return f


def segments_from_items(items: Any) -> list[RawSegment]:
    """
    Build RawSegments from a list of {start, end, text} mappings.
    Items with missing/non-numeric times or empty text are skipped; a missing
    end is taken as equal to start (the merge step drops it if it stays empty).
    """
    if not isinstance(items, list):
        return []
    out: list[RawSegment] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        start = _as_float(item.get("start"))
        if start is None:
            continue
        end = _as_float(item.get("end"))
        out.append(RawSegment(start=start, end=end if end is not None else start, text=text.strip()))
    return out


def parse_segments(payload: str) -> list[RawSegment]:
    """robust_parse_json + segments_from_items."""
    return segments_from_items(robust_parse_json(payload))
