"""Tests for the live chat poller and its scheduling policy."""

from __future__ import annotations

import httpx
import pytest

from ytchatsync.chat.live import (
    LiveChatPoller,
    LivePollResult,
    extract_live_continuation,
    next_delay_ms,
    run_live_loop,
)
from ytchatsync.errors import ErrorKind, Failure
from ytchatsync.innertube.session import Session
from ytchatsync.profile import FetchConfig

from payloads import FakeYouTube, live_action, live_response, text_item


def _session() -> Session:
    return Session(
        api_key="LIVEKEY",
        client_context={"client": {"clientVersion": "2.1", "visitorData": "V"}},
        continuation="START",
        is_live=True,
    )


class TestExtractLiveContinuation:
    def test_timed(self):
        data = live_response([], {"timedContinuationData": {"continuation": "T", "timeoutMs": 8000}})
        assert extract_live_continuation(data) == ("T", 8000)

    def test_invalidation(self):
        data = live_response([], {"invalidationContinuationData": {"continuation": "I", "timeoutMs": 10000}})
        assert extract_live_continuation(data) == ("I", 10000)

    def test_timed_without_timeout_uses_default(self):
        data = live_response([], {"timedContinuationData": {"continuation": "T"}})
        assert extract_live_continuation(data, 5000) == ("T", 5000)

    def test_reload(self):
        data = live_response([], {"reloadContinuationData": {"continuation": "R"}})
        assert extract_live_continuation(data, 5000) == ("R", 5000)

    def test_none_present_terminates(self):
        """A response with none of the three shapes ends polling."""
        assert extract_live_continuation(live_response([], {"playerSeekContinuationData": {}})) is None
        assert extract_live_continuation(live_response([])) is None
        assert extract_live_continuation({}) is None


class TestNextDelay:
    config = FetchConfig(live_min_interval_ms=1000, live_retry_ms=5000)

    def test_failure_retries(self):
        assert next_delay_ms(Failure("boom", ErrorKind.TRANSPORT), self.config) == 5000

    def test_floor(self):
        """Server suggestions below the floor are raised to it."""
        result = LivePollResult(next_continuation="c", next_interval_ms=200)
        assert next_delay_ms(result, self.config) == 1000

    def test_server_interval(self):
        result = LivePollResult(next_continuation="c", next_interval_ms=7000)
        assert next_delay_ms(result, self.config) == 7000

    def test_end(self):
        assert next_delay_ms(LivePollResult(), self.config) is None


class TestLiveChatPoller:
    @pytest.mark.asyncio
    async def test_poll(self):
        yt = FakeYouTube()
        yt.live = lambda body: live_response(
            [live_action(text_item("l1", "hi")), live_action(text_item(None, "no id"))],
            {"timedContinuationData": {"continuation": "NEXT", "timeoutMs": 3000}},
        )
        result = await LiveChatPoller(yt.client()).poll(_session())

        assert isinstance(result, LivePollResult)
        assert [m.id for m in result.messages] == ["l1", "live-1"]
        assert all(m.timestamp == 0 for m in result.messages)
        assert result.next_continuation == "NEXT"
        assert result.next_interval_ms == 3000

        request = yt.requests[0]
        assert request.url.params["key"] == "LIVEKEY"
        assert request.headers["X-YouTube-Client-Version"] == "2.1"
        assert b'"continuation":"START"' in request.content.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_missing_actions_is_empty(self):
        yt = FakeYouTube()
        yt.live = lambda body: {"continuationContents": {"liveChatContinuation": {
            "continuations": [{"reloadContinuationData": {"continuation": "R"}}]
        }}}
        result = await LiveChatPoller(yt.client()).poll(_session())
        assert result.messages == []
        assert result.next_continuation == "R"

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self):
        yt = FakeYouTube()
        yt.live = lambda body: httpx.Response(403, text="forbidden")
        result = await LiveChatPoller(yt.client()).poll(_session())
        assert isinstance(result, Failure)
        assert "403" in result.error

    @pytest.mark.asyncio
    async def test_unparseable_is_failure(self):
        yt = FakeYouTube()
        yt.live = lambda body: httpx.Response(200, text="<html>oops</html>")
        result = await LiveChatPoller(yt.client()).poll(_session())
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.CONFIGURATION


class TestRunLiveLoop:
    @pytest.mark.asyncio
    async def test_follows_continuations_until_end(self):
        yt = FakeYouTube()
        calls = []

        def live(body):
            calls.append(body["continuation"])
            if body["continuation"] == "START":
                return live_response(
                    [live_action(text_item("a", "a"))],
                    {"timedContinuationData": {"continuation": "P2", "timeoutMs": 200}},
                )
            if body["continuation"] == "P2" and calls.count("P2") == 1:
                return httpx.Response(500)
            if body["continuation"] == "P2":
                return live_response(
                    [live_action(text_item("b", "b"))],
                    {"invalidationContinuationData": {"continuation": "P3", "timeoutMs": 6000}},
                )
            return live_response([])

        yt.live = live
        sleeps, batches, failures, ended = [], [], [], []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        polls = await run_live_loop(
            LiveChatPoller(yt.client()),
            _session(),
            batches.append,
            failures.append,
            lambda: ended.append(True),
            sleep=fake_sleep,
        )

        assert calls == ["START", "P2", "P2", "P3"]
        assert polls == 4
        assert [[m.id for m in batch] for batch in batches] == [["a"], ["b"]]
        assert len(failures) == 1
        assert sleeps == [1.0, 5.0, 6.0]
        assert ended == [True]

    @pytest.mark.asyncio
    async def test_max_polls(self):
        yt = FakeYouTube()
        yt.live = lambda body: live_response([], {"timedContinuationData": {"continuation": "again", "timeoutMs": 1}})
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        polls = await run_live_loop(
            LiveChatPoller(yt.client()), _session(), lambda msgs: None, sleep=fake_sleep, max_polls=3
        )
        assert polls == 3
        assert len(sleeps) == 2
