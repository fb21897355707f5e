"""Per-video chat orchestration.

State machine:

    IDLE -> CHECKING_AVAILABILITY -> NOT_YOUTUBE | NO_CHAT_AVAILABLE
                                   | LIVE_FETCHING | ARCHIVED_FETCHING
         -> READY | ERROR        (retry: ERROR -> CHECKING_AVAILABILITY)

A new file-loaded event supersedes whatever is in flight: live polling is
cancelled before anything else happens, and archived results are dropped on
arrival unless their (generation, video_id) tag is still current.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from . import host as hostmsg
from .chat.archived import ArchivedChatFetcher
from .chat.live import LiveChatPoller, run_live_loop
from .chat.models import ChatMessage, FetchProgress
from .chat.store import ChatTimeline
from .errors import ErrorKind, Failure
from .host import HostBridge, chunk_payloads
from .innertube.client import InnertubeClient
from .innertube.probe import AvailabilityProbe
from .innertube.session import Session, SessionBootstrapper
from .profile import FetchConfig, Preferences

log = logging.getLogger("ytchatsync.orchestrator")

YOUTUBE_URL_RE = re.compile(r"^https?://(www\.)?(youtube\.com|youtu\.be)/")
VIDEO_ID_PATTERNS = (
    re.compile(r"youtube\.com/watch\?(?:[^#]*&)?v=([^&#]+)"),
    re.compile(r"youtu\.be/([^?&#/]+)"),
    re.compile(r"youtube\.com/embed/([^?&#/]+)"),
    re.compile(r"youtube\.com/live/([^?&#/]+)"),
)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


def is_youtube_url(url: str) -> bool:
    return bool(YOUTUBE_URL_RE.match(url))


def extract_video_id(url: str) -> Optional[str]:
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


class ChatState(str, Enum):
    IDLE = "idle"
    CHECKING_AVAILABILITY = "checking_availability"
    NOT_YOUTUBE = "not_youtube"
    NO_CHAT_AVAILABLE = "no_chat_available"
    LIVE_FETCHING = "live_fetching"
    ARCHIVED_FETCHING = "archived_fetching"
    READY = "ready"
    ERROR = "error"


@dataclass
class ControllerState:
    """Everything mutable the controller owns; nothing else holds a reference."""

    state: ChatState = ChatState.IDLE
    url: Optional[str] = None
    video_id: Optional[str] = None
    generation: int = 0
    timeline: ChatTimeline = field(default_factory=ChatTimeline)
    loading: bool = False
    is_live: bool = False
    info: Optional[str] = None
    error: Optional[Dict[str, str]] = None
    position: Optional[float] = None
    live_task: Optional["asyncio.Task[None]"] = None


class ChatSyncController:
    """Drive chat acquisition for the video the host currently has loaded.

    Args:
        host: Outbound message channel and preference store
        config: Tunable constants
        client, probe, bootstrapper, fetcher, poller: Collaborators (injectable for tests)
        sleep: Awaitable sleep used between live polls
    """

    def __init__(
        self,
        host: HostBridge,
        config: Optional[FetchConfig] = None,
        *,
        client: Optional[InnertubeClient] = None,
        probe: Optional[AvailabilityProbe] = None,
        bootstrapper: Optional[SessionBootstrapper] = None,
        fetcher: Optional[ArchivedChatFetcher] = None,
        poller: Optional[LiveChatPoller] = None,
        preference_defaults: Optional[Preferences] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.host = host
        self.config = config or FetchConfig()
        self._owns_client = client is None
        self.client = client or InnertubeClient(self.config)
        self.probe = probe or AvailabilityProbe(self.config.ytdlp_path)
        self.bootstrapper = bootstrapper or SessionBootstrapper(self.client, self.probe)
        self.fetcher = fetcher or ArchivedChatFetcher(self.client, self.config, self.bootstrapper)
        self.poller = poller or LiveChatPoller(self.client, self.config)
        self.preference_defaults = preference_defaults or Preferences()
        self._sleep = sleep
        self.st = ControllerState()

    # ---------------------------------------------------------------------
    # Emission helpers
    # ---------------------------------------------------------------------

    @property
    def state(self) -> ChatState:
        return self.st.state

    def _emit(self, name: str, payload: Dict[str, Any]) -> None:
        self.host.post_message(name, payload)

    def _set(self, state: ChatState) -> None:
        if state is not self.st.state:
            log.debug(f"[ORCH] {self.st.state.value} -> {state.value} ({self.st.video_id})")
        self.st.state = state

    def _set_loading(self, loading: bool) -> None:
        self.st.loading = loading
        self._emit(hostmsg.CHAT_LOADING, {"loading": loading})

    def _info(self, state: ChatState, message: str) -> None:
        self._set(state)
        self.st.info = message
        self._emit(hostmsg.CHAT_INFO, {"message": message})

    def _fail(self, message: str, error: Optional[str] = None) -> None:
        self._set(ChatState.ERROR)
        payload = {"message": message}
        if error:
            payload["error"] = error
        self.st.error = payload
        self._emit(hostmsg.CHAT_ERROR, payload)
        if self.st.loading:
            self._set_loading(False)

    def _is_current(self, generation: int, video_id: str) -> bool:
        return generation == self.st.generation and video_id == self.st.video_id

    def preferences(self) -> Preferences:
        return Preferences.from_host(self.host.get_preference, self.preference_defaults)

    def _send_transcript(self) -> None:
        messages = self.st.timeline.messages
        for payload in chunk_payloads(messages, self.config.chunk_size):
            self._emit(hostmsg.CHAT_DATA_CHUNK, payload)
        self._emit(hostmsg.CHAT_DATA_COMPLETE, {"totalMessages": len(messages)})

    # ---------------------------------------------------------------------
    # Host events
    # ---------------------------------------------------------------------

    async def on_file_loaded(self, url: Optional[str]) -> None:
        """Start chat acquisition for a newly loaded file, superseding prior work."""
        self._cancel_live()
        st = self.st
        st.generation += 1
        generation = st.generation
        st.url = url
        st.video_id = None
        st.timeline = ChatTimeline()
        st.is_live = False
        st.info = None
        st.error = None
        st.position = None
        if st.loading:
            self._set_loading(False)

        if not url:
            log.info("[ORCH] No URL available")
            self._set(ChatState.IDLE)
            return

        log.info(f"[ORCH] File loaded: {url}")
        if not is_youtube_url(url):
            self._info(ChatState.NOT_YOUTUBE, "This is not a YouTube video")
            return

        video_id = extract_video_id(url)
        if not video_id:
            self._fail("Could not extract YouTube video ID")
            return

        st.video_id = video_id
        await self._run_guarded(generation, video_id)

    async def on_retry(self) -> None:
        if self.st.url:
            log.info(f"[ORCH] Retrying {self.st.url}")
            await self.on_file_loaded(self.st.url)

    def on_position_changed(self, position: Optional[float]) -> None:
        if position is None or not self.st.video_id or len(self.st.timeline) == 0:
            return
        self.st.position = position
        self._emit(hostmsg.POSITION_UPDATE, {"position": position})

    def on_ready(self) -> None:
        """Presentation layer (re)attached: replay the current state to it."""
        st = self.st
        self._emit(hostmsg.PREFERENCES_UPDATE, self.preferences().to_dict())
        self._emit(hostmsg.CHAT_LOADING, {"loading": st.loading})
        if st.info:
            self._emit(hostmsg.CHAT_INFO, {"message": st.info})
        if st.error:
            self._emit(hostmsg.CHAT_ERROR, dict(st.error))
        if len(st.timeline) == 0:
            return
        if st.is_live:
            self._emit(hostmsg.LIVE_CHAT_MESSAGES, {"messages": [m.to_dict() for m in st.timeline]})
        else:
            self._send_transcript()
        if st.position is not None:
            self._emit(hostmsg.POSITION_UPDATE, {"position": st.position})

    async def handle_command(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Dispatch an inbound command from the presentation layer."""
        if name == hostmsg.READY:
            self.on_ready()
        elif name == hostmsg.RETRY_FETCH:
            await self.on_retry()
        else:
            log.debug(f"[ORCH] Ignoring unknown command {name!r}")

    async def close(self) -> None:
        task = self.st.live_task
        self._cancel_live()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self.client.aclose()

    # ---------------------------------------------------------------------
    # Fetch flow
    # ---------------------------------------------------------------------

    def _cancel_live(self) -> None:
        task = self.st.live_task
        self.st.live_task = None
        if task is not None and not task.done():
            log.info(f"[ORCH] Stopping live polling for {self.st.video_id}")
            task.cancel()

    async def _run_guarded(self, generation: int, video_id: str) -> None:
        try:
            await self._fetch(generation, video_id)
        except Exception as e:
            log.exception(f"[ORCH] Unexpected failure for {video_id}")
            if self._is_current(generation, video_id):
                self._fail(UNEXPECTED_ERROR_MESSAGE, f"{type(e).__name__}: {e}")

    async def _fetch(self, generation: int, video_id: str) -> None:
        self._set(ChatState.CHECKING_AVAILABILITY)
        probe = await self.probe.probe(video_id)
        if not self._is_current(generation, video_id):
            log.info(f"[ORCH] Discarding probe result for superseded video {video_id}")
            return

        if isinstance(probe, Failure):
            self._fail("Failed to check chat availability", probe.error)
            return
        if not probe.chat_available:
            self._info(ChatState.NO_CHAT_AVAILABLE, "No chat data available for this video")
            return

        if probe.is_live and await self._start_live(generation, video_id):
            return
        if not self._is_current(generation, video_id):
            return
        await self._fetch_archived(generation, video_id)

    async def _start_live(self, generation: int, video_id: str) -> bool:
        """Start live polling. False means "not live after all": use the archived path."""
        self._set(ChatState.LIVE_FETCHING)
        self._set_loading(True)
        session = await self.bootstrapper.bootstrap_live(video_id)
        if not self._is_current(generation, video_id):
            return True

        if isinstance(session, Failure):
            if session.is_not_live:
                log.info(f"[ORCH] {video_id} is no longer live, falling back to replay")
                return False
            self._fail("Failed to start live chat", session.error)
            return True

        self.st.is_live = True
        self.st.timeline.video_id = video_id
        self.poller.reset()
        self._set_loading(False)
        self.st.live_task = asyncio.create_task(self._live_loop(generation, video_id, session))
        return True

    async def _live_loop(self, generation: int, video_id: str, session: Session) -> None:
        def on_messages(messages: List[ChatMessage]) -> None:
            if not self._is_current(generation, video_id):
                return
            self.st.timeline.extend(messages)
            self.st.timeline.keep_last(self.config.live_buffer_max)
            if self.st.state is ChatState.LIVE_FETCHING:
                self._set(ChatState.READY)
            self._emit(hostmsg.LIVE_CHAT_MESSAGES, {"messages": [m.to_dict() for m in messages]})

        def on_failure(failure: Failure) -> None:
            log.warning(f"[ORCH] Live poll failed for {video_id}, retrying in {self.config.live_retry_ms} ms: {failure.error}")

        def on_end() -> None:
            if self._is_current(generation, video_id):
                self._info(ChatState.READY, "Live stream has ended")

        try:
            polls = await run_live_loop(
                self.poller, session, on_messages, on_failure, on_end, sleep=self._sleep
            )
            log.info(f"[ORCH] Live polling for {video_id} finished after {polls} polls")
        except Exception as e:
            log.exception(f"[ORCH] Live polling crashed for {video_id}")
            if self._is_current(generation, video_id):
                self._fail(UNEXPECTED_ERROR_MESSAGE, f"{type(e).__name__}: {e}")

    async def _fetch_archived(self, generation: int, video_id: str) -> None:
        self._set(ChatState.ARCHIVED_FETCHING)
        # Loading UI goes up before the download starts
        if not self.st.loading:
            self._set_loading(True)

        def on_progress(progress: FetchProgress) -> None:
            if self._is_current(generation, video_id):
                self._emit(hostmsg.CHAT_PROGRESS, progress.to_dict())

        result = await self.fetcher.fetch_all(video_id, on_progress)
        if not self._is_current(generation, video_id):
            log.info(f"[ORCH] Discarding stale transcript for {video_id}")
            return

        if isinstance(result, Failure):
            if result.kind is ErrorKind.NO_CHAT:
                self._info(ChatState.NO_CHAT_AVAILABLE, result.error)
                self._set_loading(False)
            else:
                self._fail("Failed to fetch chat replay", result.error)
            return

        self.st.timeline = ChatTimeline(result.messages, video_id=video_id)
        self._set(ChatState.READY)
        log.info(f"[ORCH] {video_id}: delivering {len(result.messages)} messages")
        self._send_transcript()
        self._set_loading(False)
