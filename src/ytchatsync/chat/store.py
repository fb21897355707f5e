"""In-memory, timestamp-ordered chat buffer for synced playback queries.

Holds the messages for the currently loaded video only; replaced wholesale
when a new transcript arrives, appended to by live polling.
"""

from __future__ import annotations

import bisect
from typing import Iterable, Iterator, List, Optional, Tuple

from .models import ChatMessage


class ChatTimeline:
    """Messages ordered by timestamp (stable for equal timestamps)."""

    def __init__(self, messages: Optional[Iterable[ChatMessage]] = None, video_id: Optional[str] = None):
        self.video_id = video_id
        self._messages: List[ChatMessage] = []
        self._times: List[float] = []
        if messages:
            self.extend(messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._messages)

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    def extend(self, messages: Iterable[ChatMessage]) -> int:
        """Add messages, keeping timestamp order. Returns the number added."""
        new = list(messages)
        if not new:
            return 0
        in_order = all(a.timestamp <= b.timestamp for a, b in zip(new, new[1:]))
        if in_order and (not self._times or new[0].timestamp >= self._times[-1]):
            self._messages.extend(new)
        else:
            self._messages = sorted(self._messages + new, key=lambda m: m.timestamp)
        self._times = [m.timestamp for m in self._messages]
        return len(new)

    def keep_last(self, limit: int) -> int:
        """Drop the oldest messages beyond ``limit``. Returns the number dropped."""
        excess = len(self._messages) - max(0, limit)
        if excess <= 0:
            return 0
        del self._messages[:excess]
        del self._times[:excess]
        return excess

    def clear(self) -> None:
        self._messages = []
        self._times = []
        self.video_id = None

    def messages_between(self, start_s: float, end_s: float, limit: Optional[int] = None) -> List[ChatMessage]:
        """Messages with ``start_s <= timestamp <= end_s``."""
        lo = bisect.bisect_left(self._times, start_s)
        hi = bisect.bisect_right(self._times, end_s)
        out = self._messages[lo:hi]
        return out[:limit] if limit is not None else out

    def visible_at(self, position_s: float, limit: int = 200) -> List[ChatMessage]:
        """The last ``limit`` messages at or before the playback position."""
        hi = bisect.bisect_right(self._times, position_s)
        return self._messages[max(0, hi - limit):hi]

    def get_time_range(self) -> Tuple[float, float]:
        if not self._times:
            return (0.0, 0.0)
        return (self._times[0], self._times[-1])
