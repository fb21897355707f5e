"""Live chat poller.

One POST per poll; the caller schedules the next one. Scheduling policy:
  - failure: retry after ``live_retry_ms`` without stopping
  - continuation present: wait max(server timeout, ``live_min_interval_ms``)
  - no continuation: the stream ended, stop
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from ..errors import ChatFetchError, Failure
from ..innertube.client import InnertubeClient, live_api_url
from ..innertube.session import Session
from ..profile import FetchConfig
from ..utils import dig
from .models import ChatMessage
from .normalize import ActionParser, MessageIdSequence

log = logging.getLogger("ytchatsync.chat")


@dataclass
class LivePollResult:
    messages: List[ChatMessage] = field(default_factory=list)
    next_continuation: Optional[str] = None
    next_interval_ms: Optional[int] = None

    success = True

    @property
    def ended(self) -> bool:
        return not self.next_continuation


def extract_live_continuation(data: Any, default_timeout_ms: int = 5000) -> Optional[Tuple[str, int]]:
    """Next (continuation, timeout_ms) from a live response, or None when the stream ended.

    Timed and invalidation continuations carry a server timeout; a reload
    continuation has none and uses ``default_timeout_ms``.
    """
    cont = dig(data, "continuationContents", "liveChatContinuation", "continuations", 0, expected=dict)
    if cont is None:
        return None

    timed = cont.get("timedContinuationData") or cont.get("invalidationContinuationData")
    if isinstance(timed, dict) and isinstance(timed.get("continuation"), str) and timed["continuation"]:
        timeout = timed.get("timeoutMs")
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            timeout = default_timeout_ms
        return timed["continuation"], int(timeout)

    reload_token = dig(cont, "reloadContinuationData", "continuation", expected=str)
    if reload_token:
        return reload_token, default_timeout_ms
    return None


def next_delay_ms(result: Union[LivePollResult, Failure], config: FetchConfig) -> Optional[int]:
    """Delay before the next poll, or None to stop polling."""
    if isinstance(result, Failure):
        return config.live_retry_ms
    if result.ended:
        return None
    return max(config.live_min_interval_ms, result.next_interval_ms or 0)


class LiveChatPoller:
    """Single-shot live chat fetches against a bootstrapped live session."""

    def __init__(self, client: InnertubeClient, config: Optional[FetchConfig] = None):
        self.client = client
        self.config = config or client.config
        self.ids = MessageIdSequence("live")
        self.parser = ActionParser(self.ids, log_every=self.config.decode_log_every)

    def reset(self) -> None:
        self.ids.reset()

    async def poll(self, session: Session, continuation: Optional[str] = None) -> Union[LivePollResult, Failure]:
        """Fetch one batch using ``continuation`` (default: the session's cursor)."""
        cursor = continuation or session.continuation
        try:
            data = await self.client.post_json(
                live_api_url(session.api_key),
                session.request_body(cursor),
                session.api_headers(),
            )
        except ChatFetchError as e:
            log.warning(f"[LIVE] Poll failed: {e}")
            return Failure.from_exception(e)

        actions = dig(data, "continuationContents", "liveChatContinuation", "actions", expected=list) or []
        messages = self.parser.parse_live_actions(actions)

        nxt = extract_live_continuation(data, self.config.live_default_timeout_ms)
        if nxt is None:
            log.info(f"[LIVE] No continuation in response ({len(messages)} messages), stream ended")
            return LivePollResult(messages=messages)
        token, timeout_ms = nxt
        log.debug(f"[LIVE] {len(messages)} messages, next poll in {timeout_ms} ms")
        return LivePollResult(messages=messages, next_continuation=token, next_interval_ms=timeout_ms)


async def run_live_loop(
    poller: LiveChatPoller,
    session: Session,
    on_messages: Callable[[List[ChatMessage]], None],
    on_failure: Optional[Callable[[Failure], None]] = None,
    on_end: Optional[Callable[[], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    max_polls: Optional[int] = None,
) -> int:
    """Poll until the stream ends (or ``max_polls`` is reached); returns the poll count.

    At most one request is outstanding at a time. Cancel the surrounding
    task to stop polling.
    """
    cursor = session.continuation
    polls = 0
    while max_polls is None or polls < max_polls:
        result = await poller.poll(session, cursor)
        polls += 1

        if isinstance(result, Failure):
            if on_failure is not None:
                on_failure(result)
        else:
            if result.messages:
                on_messages(result.messages)
            if result.next_continuation:
                cursor = result.next_continuation

        delay = next_delay_ms(result, poller.config)
        if delay is None:
            if on_end is not None:
                on_end()
            break
        if max_polls is not None and polls >= max_polls:
            break
        await sleep(delay / 1000.0)
    return polls
