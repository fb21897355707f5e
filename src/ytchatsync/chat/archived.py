"""Archived (replay) chat transcript fetcher.

Flow:
  1. Bootstrap a session from the watch page (API key, context, continuation)
  2. GET the chat replay page for the initial continuation
  3. Upgrade to the unfiltered ("all messages") continuation when offered,
     otherwise keep the first page's messages and its own continuation
  4. Split the video duration into equal segments and follow continuations
     for each segment concurrently, seeking to the segment start
  5. Merge: dedup by id (first page seeded first), then sort by timestamp

A worker that fails mid-stream keeps whatever it already collected.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..errors import ChatFetchError, ConfigurationError, Failure
from ..innertube.client import InnertubeClient, chat_replay_url, replay_api_url
from ..innertube.extract import parse_json_lenient, search_json
from ..innertube.session import INITIAL_DATA_RE, Session, SessionBootstrapper
from ..profile import FetchConfig
from ..utils import dig
from .models import ChatMessage, FetchProgress, Segment
from .normalize import ActionParser, MessageIdSequence, last_offset_ms

log = logging.getLogger("ytchatsync.chat")

ProgressCallback = Callable[[FetchProgress], None]


# =============================================================================
# Page helpers
# =============================================================================

def extract_page_data(body: str) -> Optional[Dict[str, Any]]:
    """Initial data from an HTML page, or the body itself parsed as JSON."""
    data = search_json(INITIAL_DATA_RE, body)
    if data is None:
        data = parse_json_lenient(body)
    return data if isinstance(data, dict) else None


def get_live_chat_continuation(data: Any) -> Optional[Dict[str, Any]]:
    return dig(data, "continuationContents", "liveChatContinuation", expected=dict)


def extract_unfiltered_continuation(live_chat_continuation: Dict[str, Any]) -> Optional[str]:
    """Continuation of the second view-selector entry ("Live chat" rather than "Top chat")."""
    return dig(
        live_chat_continuation,
        "header", "liveChatHeaderRenderer", "viewSelector", "sortFilterSubMenuRenderer",
        "subMenuItems", 1, "continuation", "reloadContinuationData", "continuation",
        expected=str,
    ) or None


@dataclass
class ReplayPage:
    actions: List[Any]
    continuation: Optional[str]
    offset_ms: Optional[int]


def parse_replay_page(live_chat_continuation: Dict[str, Any]) -> ReplayPage:
    actions = dig(live_chat_continuation, "actions", expected=list) or []
    continuation = dig(
        live_chat_continuation,
        "continuations", 0, "liveChatReplayContinuationData", "continuation",
        expected=str,
    )
    return ReplayPage(actions=actions, continuation=continuation or None, offset_ms=last_offset_ms(actions))


# =============================================================================
# Partition / merge
# =============================================================================

def partition_segments(duration_ms: int, worker_count: int = 10, end_margin_ms: int = 60_000) -> List[Segment]:
    """Split ``[0, duration_ms]`` into contiguous equal-width worker ranges.

    The last range is padded by ``end_margin_ms`` to catch trailing messages.
    """
    if worker_count < 1:
        raise ValueError("worker_count must be >= 1")
    if duration_ms < 0:
        raise ValueError("duration_ms must be >= 0")

    width = duration_ms / worker_count
    segments = [
        Segment(i, int(math.floor(i * width)), int(math.floor((i + 1) * width)))
        for i in range(worker_count)
    ]
    last = segments[-1]
    segments[-1] = Segment(last.worker_index, last.start_offset_ms, duration_ms + end_margin_ms)
    return segments


@dataclass
class SegmentResult:
    """Messages one worker collected for its segment."""

    segment: Segment
    messages: List[ChatMessage] = field(default_factory=list)
    fragments: int = 0
    error: Optional[str] = None


def merge_messages(
    seed: Iterable[ChatMessage],
    results: Iterable[SegmentResult],
    ids: Optional[MessageIdSequence] = None,
) -> List[ChatMessage]:
    """Dedup by id (first seen wins, seed first) and sort by timestamp."""
    seen = set()
    merged: List[ChatMessage] = []

    def _add(msg: ChatMessage) -> None:
        if msg.id in seen:
            return
        seen.add(msg.id)
        merged.append(msg)

    for msg in seed:
        _add(msg)

    for result in sorted(results, key=lambda r: r.segment.start_offset_ms):
        for msg in result.messages:
            if ids is not None and ids.is_synthesized(msg.id):
                # Id-only dedup cannot recognize this message if the first page saw it too.
                log.debug(f"[CHAT] Worker {result.segment.worker_index} message without server id: {msg.id}")
            _add(msg)

    merged.sort(key=lambda m: m.timestamp)
    return merged


@dataclass
class ArchivedFetchResult:
    video_id: str
    messages: List[ChatMessage]
    duration_ms: Optional[int] = None
    partitioned: bool = True

    success = True

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "messages": [m.to_dict() for m in self.messages]}


# =============================================================================
# Fetcher
# =============================================================================

class ArchivedChatFetcher:
    """Fetch the complete replay transcript of a finished broadcast.

    Args:
        client: Shared innertube HTTP client
        config: Worker count, fallback duration and margin
        bootstrapper: Session source (defaults to one over ``client``)
    """

    def __init__(
        self,
        client: InnertubeClient,
        config: Optional[FetchConfig] = None,
        bootstrapper: Optional[SessionBootstrapper] = None,
    ):
        self.client = client
        self.config = config or client.config
        self.bootstrapper = bootstrapper or SessionBootstrapper(client)

    async def fetch_chat_page(self, continuation: str) -> Dict[str, Any]:
        body = await self.client.get_text(chat_replay_url(continuation))
        data = extract_page_data(body)
        if data is None:
            raise ConfigurationError("Could not parse chat page data")
        lcc = get_live_chat_continuation(data)
        if lcc is None:
            raise ConfigurationError("No chat data found")
        return lcc

    async def fetch_fragment(
        self,
        session: Session,
        continuation: str,
        player_offset_ms: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        data = await self.client.post_json(
            replay_api_url(session.api_key),
            session.request_body(continuation, player_offset_ms),
            session.api_headers(),
        )
        return get_live_chat_continuation(data)

    async def fetch_segment(
        self,
        session: Session,
        parser: ActionParser,
        continuation: str,
        segment: Segment,
        on_count: Optional[Callable[[int, int], None]] = None,
    ) -> SegmentResult:
        """Seek to the segment start, then follow continuations until past its end."""
        result = SegmentResult(segment)
        try:
            lcc = await self.fetch_fragment(session, continuation, segment.start_offset_ms)
            while lcc is not None:
                result.fragments += 1
                page = parse_replay_page(lcc)
                for msg in parser.parse_replay_actions(page.actions):
                    if segment.contains(round(msg.timestamp * 1000)):
                        result.messages.append(msg)
                if on_count is not None:
                    on_count(segment.worker_index, len(result.messages))

                if page.offset_ms is not None and page.offset_ms >= segment.end_offset_ms:
                    break
                if not page.continuation:
                    break
                lcc = await self.fetch_fragment(session, page.continuation)
        except ChatFetchError as e:
            result.error = str(e)
            log.warning(
                f"[CHAT] Worker {segment.worker_index} stopped after {result.fragments} fragments "
                f"({len(result.messages)} messages kept): {e}"
            )
        except Exception as e:
            # Anything else stays scoped to this worker; siblings keep their segments
            result.error = f"{type(e).__name__}: {e}"
            log.exception(
                f"[CHAT] Worker {segment.worker_index} crashed after {result.fragments} fragments "
                f"({len(result.messages)} messages kept)"
            )
        return result

    async def fetch_all(
        self,
        video_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Union[ArchivedFetchResult, Failure]:
        """Fetch, merge and order every replay message of ``video_id``."""

        def _progress(count: int, offset_ms: int, status: str, message: str) -> None:
            if on_progress is not None:
                on_progress(FetchProgress(count, offset_ms, status, message))

        _progress(0, 0, "fetching", "Fetching video page...")
        session = await self.bootstrapper.bootstrap(video_id)
        if isinstance(session, Failure):
            _progress(0, 0, "error", session.error)
            return session

        ids = MessageIdSequence("archived")
        parser = ActionParser(ids, log_every=self.config.decode_log_every)

        try:
            _progress(0, 0, "fetching", "Fetching chat page...")
            lcc = await self.fetch_chat_page(session.continuation)
        except ChatFetchError as e:
            log.warning(f"[CHAT] Chat page fetch failed for {video_id}: {e}")
            _progress(0, 0, "error", str(e))
            return Failure.from_exception(e)

        seed: List[ChatMessage] = []
        continuation = extract_unfiltered_continuation(lcc)
        if continuation is None:
            first = parse_replay_page(lcc)
            seed = parser.parse_replay_actions(first.actions)
            if not first.continuation:
                log.info(f"[CHAT] {video_id}: single chat page, {len(seed)} messages")
                _progress(len(seed), first.offset_ms or 0, "complete", f"Fetched {len(seed)} messages")
                return ArchivedFetchResult(video_id, seed, session.duration_ms, partitioned=False)
            continuation = first.continuation
            if seed:
                _progress(len(seed), first.offset_ms or 0, "fetching", f"Fetched {len(seed)} messages...")

        duration_ms = session.duration_ms
        if not duration_ms:
            log.info(f"[CHAT] {video_id}: duration unknown, assuming {self.config.fallback_duration_ms} ms")
            duration_ms = self.config.fallback_duration_ms

        segments = partition_segments(duration_ms, self.config.worker_count, self.config.end_margin_ms)
        worker_counts = [0] * len(segments)

        def _on_count(worker_index: int, count: int) -> None:
            worker_counts[worker_index] = count
            total = sum(worker_counts) + len(seed)
            _progress(total, 0, "fetching", f"Fetched {total:,} messages...")

        log.info(f"[CHAT] {video_id}: fetching {len(segments)} segments over {duration_ms} ms")
        _progress(len(seed), 0, "fetching", "Fetching chat messages...")
        results = await asyncio.gather(
            *(self.fetch_segment(session, parser, continuation, seg, _on_count) for seg in segments)
        )

        failed = sum(1 for r in results if r.error)
        if failed:
            log.warning(f"[CHAT] {video_id}: {failed}/{len(results)} segments truncated")

        messages = merge_messages(seed, results, ids)
        last_ms = round(messages[-1].timestamp * 1000) if messages else 0
        log.info(f"[CHAT] {video_id}: {len(messages)} messages after merge")
        _progress(len(messages), last_ms, "complete", f"Fetched {len(messages)} messages")
        return ArchivedFetchResult(video_id, messages, duration_ms, partitioned=True)
