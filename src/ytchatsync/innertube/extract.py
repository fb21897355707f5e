"""Structured-data extraction from HTML pages and loosely framed JSON.

Two primitives, independent of any particular payload schema:
  - search_json(): locate a JSON object after a regex anchor
  - raw_decode(): parse the earliest valid JSON value at the start of a string,
    ignoring whatever trails it
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Pattern, Tuple, Union

_WS = " \t\r\n"


def raw_decode(s: str) -> Optional[Tuple[Any, int]]:
    """Parse the shortest valid JSON object/array prefix of ``s``.

    Brackets are counted outside of string literals only (escapes skipped);
    each time depth returns to zero the prefix is tried with json.loads and
    the scan continues on failure.

    Returns:
        (value, end_index) or None if no prefix parses
    """
    if not s or s[0] not in "{[":
        return None

    depth = 0
    in_string = False
    i = 0
    n = len(s)
    while i < n:
        ch = s[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(s[: i + 1]), i + 1
                except ValueError:
                    pass
            elif depth < 0:
                return None
        i += 1
    return None


def search_json(start_pattern: Union[str, Pattern[str]], text: str) -> Optional[Any]:
    """Find the JSON object that follows ``start_pattern`` in ``text``.

    The candidate span runs from the first ``{`` after the anchor to the last
    ``}`` in the document; raw_decode() then picks the earliest valid prefix.
    """
    pattern = re.compile(start_pattern) if isinstance(start_pattern, str) else start_pattern
    match = pattern.search(text)
    if not match:
        return None

    start = match.end()
    while start < len(text) and text[start] in _WS:
        start += 1
    if start >= len(text) or text[start] != "{":
        return None

    last_brace = text.rfind("}")
    if last_brace <= start:
        return None

    result = raw_decode(text[start : last_brace + 1])
    return result[0] if result else None


def search_regex_json(pattern: Union[str, Pattern[str]], text: str, group: int = 1) -> Optional[Any]:
    """Parse the JSON captured by ``group`` of ``pattern``; None on miss or bad JSON."""
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    match = regex.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(group))
    except ValueError:
        return None


def parse_json_lenient(body: str) -> Optional[Any]:
    """json.loads(), falling back to the earliest valid prefix of the body."""
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        pass
    result = raw_decode(body.lstrip(_WS))
    return result[0] if result else None
