"""Async HTTP transport for YouTube pages and the innertube chat endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from ..errors import ConfigurationError, TransportError
from ..profile import FetchConfig
from .extract import parse_json_lenient

log = logging.getLogger("ytchatsync.innertube")

YOUTUBE_ORIGIN = "https://www.youtube.com"
WATCH_URL = YOUTUBE_ORIGIN + "/watch?v={video_id}"
CHAT_REPLAY_URL = YOUTUBE_ORIGIN + "/live_chat_replay?continuation={continuation}"
REPLAY_API_URL = YOUTUBE_ORIGIN + "/youtubei/v1/live_chat/get_live_chat_replay?key={api_key}"
LIVE_API_URL = YOUTUBE_ORIGIN + "/youtubei/v1/live_chat/get_live_chat?key={api_key}"


def watch_url(video_id: str) -> str:
    return WATCH_URL.format(video_id=quote(video_id, safe=""))


def chat_replay_url(continuation: str) -> str:
    return CHAT_REPLAY_URL.format(continuation=quote(continuation, safe=""))


def replay_api_url(api_key: str) -> str:
    return REPLAY_API_URL.format(api_key=quote(api_key, safe=""))


def live_api_url(api_key: str) -> str:
    return LIVE_API_URL.format(api_key=quote(api_key, safe=""))


class InnertubeClient:
    """Thin wrapper over httpx.AsyncClient with browser-like page headers.

    Non-2xx responses and transport exceptions are raised as TransportError;
    undecodable API bodies as ConfigurationError.

    Can be used as an async context manager:
        async with InnertubeClient(config) as client:
            html = await client.get_text(watch_url(video_id))
    """

    def __init__(self, config: Optional[FetchConfig] = None, http: Optional[httpx.AsyncClient] = None):
        self.config = config or FetchConfig()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.config.request_timeout_s,
        )

    async def __aenter__(self) -> "InnertubeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def page_headers(self) -> Dict[str, str]:
        # Without a desktop UA and language YouTube serves a differently shaped page.
        return {
            "User-Agent": self.config.user_agent,
            "Accept-Language": self.config.accept_language,
        }

    async def get_text(self, url: str) -> str:
        try:
            resp = await self._http.get(url, headers=self.page_headers())
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP GET error: {e}") from e
        if not resp.is_success:
            raise TransportError(f"HTTP GET failed (status {resp.status_code}): {resp.reason_phrase}")
        log.debug(f"[HTTP] GET {url} -> {resp.status_code} ({len(resp.text)} chars)")
        return resp.text

    async def post_json(self, url: str, body: Mapping[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        try:
            resp = await self._http.post(url, json=dict(body), headers=dict(headers))
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP POST error: {e}") from e
        if not resp.is_success:
            raise TransportError(f"HTTP POST failed (status {resp.status_code}): {resp.reason_phrase}")
        if not resp.text:
            raise ConfigurationError("Empty response from API")
        data = parse_json_lenient(resp.text)
        if not isinstance(data, dict):
            raise ConfigurationError("Failed to parse API response")
        return data
