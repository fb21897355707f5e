"""Recover an innertube session (API key, client context, continuation) from a watch page."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from ..errors import ChatFetchError, ConfigurationError, Failure, NoChatReplayError, NotLiveError
from ..utils import dig
from .client import YOUTUBE_ORIGIN, InnertubeClient, watch_url
from .extract import search_json, search_regex_json
from .probe import AvailabilityProbe

log = logging.getLogger("ytchatsync.innertube")

YTCFG_RE = re.compile(r"ytcfg\.set\s*\(\s*({.+?})\s*\)\s*;")
INITIAL_DATA_RE = re.compile(r"""(?:window\s*\[\s*["']ytInitialData["']\s*\]|ytInitialData)\s*=""")
PLAYER_RESPONSE_RE = re.compile(r"ytInitialPlayerResponse\s*=\s*")
LENGTH_SECONDS_RE = re.compile(r'"lengthSeconds":"(\d+)"')

_API_KEY_RE = re.compile(r'"INNERTUBE_API_KEY":"([^"]+)"')
_CONTINUATION_RE = re.compile(r'"continuation":"([^"]+)"')
_CLIENT_VERSION_RE = re.compile(r'"INNERTUBE_CLIENT_VERSION":"([^"]+)"')
_HL_RE = re.compile(r'"HL":"([^"]+)"')
_GL_RE = re.compile(r'"GL":"([^"]+)"')

DEFAULT_CLIENT_VERSION = "2.20231219.04.00"


@dataclass
class Session:
    """Per-fetch innertube session; never persisted."""

    api_key: str
    client_context: Dict[str, Any]
    continuation: str
    is_live: bool = False
    client_name: str = "1"
    duration_ms: Optional[int] = None
    video_id: str = ""

    success = True

    @property
    def client_version(self) -> str:
        return str(dig(self.client_context, "client", "clientVersion") or DEFAULT_CLIENT_VERSION)

    @property
    def visitor_data(self) -> Optional[str]:
        return dig(self.client_context, "client", "visitorData", expected=str)

    @property
    def user_agent(self) -> Optional[str]:
        return dig(self.client_context, "client", "userAgent", expected=str)

    def api_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-YouTube-Client-Name": self.client_name,
            "X-YouTube-Client-Version": self.client_version,
            "Origin": YOUTUBE_ORIGIN,
        }
        if self.visitor_data:
            headers["X-Goog-Visitor-Id"] = self.visitor_data
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        return headers

    def request_body(self, continuation: str, player_offset_ms: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"context": self.client_context, "continuation": continuation}
        if player_offset_ms is not None and player_offset_ms > 0:
            body["currentPlayerState"] = {"playerOffsetMs": str(int(player_offset_ms))}
        return body


def extract_ytcfg(html: str) -> Optional[Dict[str, Any]]:
    cfg = search_regex_json(YTCFG_RE, html)
    return cfg if isinstance(cfg, dict) else None


def extract_initial_data(text: str) -> Optional[Dict[str, Any]]:
    data = search_json(INITIAL_DATA_RE, text)
    return data if isinstance(data, dict) else None


def extract_initial_continuation(initial_data: Dict[str, Any]) -> Optional[str]:
    return dig(
        initial_data,
        "contents", "twoColumnWatchNextResults", "conversationBar", "liveChatRenderer",
        "continuations", 0, "reloadContinuationData", "continuation",
        expected=str,
    ) or None


def extract_duration_ms(html: str) -> Optional[int]:
    """Video length from the embedded player response, else a raw regex match."""
    player = search_json(PLAYER_RESPONSE_RE, html)
    raw = dig(player, "videoDetails", "lengthSeconds")
    if raw is not None:
        try:
            seconds = int(raw)
        except (TypeError, ValueError):
            seconds = 0
        if seconds > 0:
            return seconds * 1000

    match = LENGTH_SECONDS_RE.search(html)
    if match:
        seconds = int(match.group(1))
        if seconds > 0:
            return seconds * 1000
    return None


def _client_name(ytcfg: Dict[str, Any]) -> str:
    value = ytcfg.get("INNERTUBE_CONTEXT_CLIENT_NAME")
    return str(value) if value not in (None, "") else "1"


def session_from_watch_page(html: str, video_id: str = "") -> Session:
    """Build an archived-path session from watch page HTML.

    Raises:
        ConfigurationError: ytcfg, API key, context or initial data missing
        NoChatReplayError: no chat continuation on the page
    """
    ytcfg = extract_ytcfg(html)
    if ytcfg is None:
        raise ConfigurationError("Could not extract YouTube configuration")

    api_key = ytcfg.get("INNERTUBE_API_KEY")
    context = ytcfg.get("INNERTUBE_CONTEXT")
    if not isinstance(api_key, str) or not api_key or not isinstance(context, dict):
        raise ConfigurationError("Missing API key or context")

    initial_data = extract_initial_data(html)
    if initial_data is None:
        raise ConfigurationError("Could not extract initial data from video page")

    continuation = extract_initial_continuation(initial_data)
    if not continuation:
        raise NoChatReplayError("No chat replay available for this video")

    return Session(
        api_key=api_key,
        client_context=context,
        continuation=continuation,
        is_live=False,
        client_name=_client_name(ytcfg),
        duration_ms=extract_duration_ms(html),
        video_id=video_id,
    )


def live_session_from_watch_page(html: str, video_id: str = "") -> Session:
    """Build a live-path session, falling back to plain pattern matching.

    The parsed ytcfg context is preferred; otherwise the key and a minimal WEB
    client context are scraped from the page. The continuation comes from the
    initial data when present, else the longest continuation token on the page.
    """
    ytcfg = extract_ytcfg(html) or {}

    api_key = ytcfg.get("INNERTUBE_API_KEY")
    if not isinstance(api_key, str) or not api_key:
        match = _API_KEY_RE.search(html)
        if not match:
            raise ConfigurationError("Could not find API key in page")
        api_key = match.group(1)

    context = ytcfg.get("INNERTUBE_CONTEXT")
    if not isinstance(context, dict):
        version = _CLIENT_VERSION_RE.search(html)
        hl = _HL_RE.search(html)
        gl = _GL_RE.search(html)
        context = {
            "client": {
                "hl": hl.group(1) if hl else "en",
                "gl": gl.group(1) if gl else "US",
                "clientName": "WEB",
                "clientVersion": version.group(1) if version else DEFAULT_CLIENT_VERSION,
            }
        }

    continuation = None
    initial_data = extract_initial_data(html)
    if initial_data is not None:
        continuation = extract_initial_continuation(initial_data)
    if not continuation:
        # Live chat tokens are typically the longest on the page.
        tokens = _CONTINUATION_RE.findall(html)
        continuation = max(tokens, key=len) if tokens else None
    if not continuation:
        raise NoChatReplayError("Could not find continuation token")

    return Session(
        api_key=api_key,
        client_context=context,
        continuation=continuation,
        is_live=True,
        client_name=_client_name(ytcfg),
        duration_ms=None,
        video_id=video_id,
    )


class SessionBootstrapper:
    """Fetch a watch page and recover a Session from it.

    Both entry points return a Session on success and a Failure otherwise;
    they never raise for expected protocol problems.
    """

    def __init__(self, client: InnertubeClient, probe: Optional[AvailabilityProbe] = None):
        self.client = client
        self.probe = probe

    async def fetch_watch_page(self, video_id: str) -> str:
        html = await self.client.get_text(watch_url(video_id))
        log.debug(f"[SESSION] Watch page for {video_id}: {len(html)} chars")
        return html

    async def bootstrap(self, video_id: str) -> Union[Session, Failure]:
        """Archived-path bootstrap."""
        try:
            html = await self.fetch_watch_page(video_id)
            return session_from_watch_page(html, video_id)
        except ChatFetchError as e:
            log.warning(f"[SESSION] Bootstrap failed for {video_id}: {e}")
            return Failure.from_exception(e)

    async def bootstrap_live(self, video_id: str) -> Union[Session, Failure]:
        """Live-path bootstrap; a not-live probe answer yields kind NOT_LIVE."""
        try:
            if self.probe is not None:
                probe = await self.probe.probe(video_id)
                if isinstance(probe, Failure):
                    return probe
                if not probe.is_live:
                    raise NotLiveError("Video is not a live stream")
            html = await self.fetch_watch_page(video_id)
            return live_session_from_watch_page(html, video_id)
        except ChatFetchError as e:
            log.info(f"[SESSION] Live bootstrap failed for {video_id}: {e}")
            return Failure.from_exception(e)
