"""Shared utility functions for ytchatsync.

This module provides common utilities used across multiple modules:
- subprocess_flags(): Windows-specific flags to hide console windows
- dig(): optional-chaining access into loosely-typed JSON payloads
"""

from __future__ import annotations

import sys
from typing import Any, Dict, Optional, Union


def subprocess_flags() -> Dict[str, Any]:
    """Return subprocess flags to hide console window on Windows.

    Usage:
        proc = await asyncio.create_subprocess_exec(*cmd, **subprocess_flags())

    Returns:
        Dict with 'creationflags' on Windows, empty dict otherwise.
    """
    if sys.platform == "win32":
        # CREATE_NO_WINDOW = 0x08000000
        return {"creationflags": 0x08000000}
    return {}


def dig(obj: Any, *path: Union[str, int], expected: Optional[type] = None) -> Any:
    """Walk ``path`` through nested dicts/lists, returning None on any miss.

    String keys index dicts, integer keys index lists. When ``expected`` is
    given, a final value of another type is also treated as missing.

    Example:
        dig(data, "continuationContents", "liveChatContinuation", "actions", expected=list)
    """
    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or not -len(cur) <= key < len(cur):
                return None
            cur = cur[key]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(key)
        if cur is None:
            return None
    if expected is not None and not isinstance(cur, expected):
        return None
    return cur
