"""Tests for the per-video chat controller.

Tests:
- URL classification and video id extraction
- Availability routing (not YouTube, no chat, live, archived)
- Supersession of in-flight work by a new file load
- Error boundaries, retry and presentation re-sync
"""

from __future__ import annotations

import asyncio
import json

import pytest

from ytchatsync import host as hostmsg
from ytchatsync.chat.archived import ArchivedFetchResult
from ytchatsync.chat.models import ChatMessage, MessageType
from ytchatsync.errors import ErrorKind, Failure
from ytchatsync.host import RecordingHost
from ytchatsync.innertube.probe import AvailabilityProbe, ProcessResult
from ytchatsync.orchestrator import (
    UNEXPECTED_ERROR_MESSAGE,
    ChatState,
    ChatSyncController,
    extract_video_id,
    is_youtube_url,
)
from ytchatsync.profile import FetchConfig

from payloads import (
    FakeYouTube,
    chat_replay_page,
    fake_runner,
    live_action,
    live_response,
    replay_action,
    replay_response,
    text_item,
    watch_page,
)

URL_A = "https://www.youtube.com/watch?v=AAAAAAAAAAA"
URL_B = "https://youtu.be/BBBBBBBBBBB"

REPLAY_INFO = {"id": "v", "is_live": False, "subtitles": {"live_chat": [{}]}}
LIVE_INFO = {"id": "v", "is_live": True}


def _msg(msg_id: str, timestamp: float = 1.0) -> ChatMessage:
    return ChatMessage(id=msg_id, type=MessageType.TEXT, timestamp=timestamp, author="a", message=msg_id)


def _probe(info=REPLAY_INFO, **kwargs) -> AvailabilityProbe:
    return AvailabilityProbe(runner=fake_runner(info, **kwargs))


class StaticFetcher:
    """Archived fetcher returning canned results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def fetch_all(self, video_id, on_progress=None):
        self.calls.append(video_id)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


async def _no_sleep(seconds):
    return None


class TestUrlHandling:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
            ("https://youtube.com/watch?feature=share&v=abc123&t=10", "abc123"),
            ("https://youtu.be/xyz789?t=5", "xyz789"),
            ("https://www.youtube.com/embed/emb123", "emb123"),
            ("https://www.youtube.com/live/liv123?si=q", "liv123"),
            ("https://www.youtube.com/channel/UCabc", None),
        ],
    )
    def test_extract_video_id(self, url, expected):
        assert extract_video_id(url) == expected

    def test_is_youtube_url(self):
        assert is_youtube_url("https://www.youtube.com/watch?v=x")
        assert is_youtube_url("http://youtu.be/x")
        assert not is_youtube_url("https://vimeo.com/123")
        assert not is_youtube_url("/home/user/video.mp4")


class TestRouting:
    @pytest.mark.asyncio
    async def test_no_url_is_idle(self):
        host = RecordingHost()
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe())
        await controller.on_file_loaded(None)
        assert controller.state is ChatState.IDLE
        assert host.sent == []

    @pytest.mark.asyncio
    async def test_not_youtube(self):
        host = RecordingHost()
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe())
        await controller.on_file_loaded("https://vimeo.com/123")
        assert controller.state is ChatState.NOT_YOUTUBE
        assert host.payloads(hostmsg.CHAT_INFO) == [{"message": "This is not a YouTube video"}]

    @pytest.mark.asyncio
    async def test_missing_video_id(self):
        host = RecordingHost()
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe())
        await controller.on_file_loaded("https://www.youtube.com/channel/UCabc")
        assert controller.state is ChatState.ERROR
        assert host.payloads(hostmsg.CHAT_ERROR) == [{"message": "Could not extract YouTube video ID"}]

    @pytest.mark.asyncio
    async def test_no_chat_available_skips_fetch(self):
        """A probe with neither a live flag nor a live_chat track never touches the network."""
        yt = FakeYouTube()
        host = RecordingHost()
        controller = ChatSyncController(host, client=yt.client(), probe=_probe({"id": "v", "is_live": False}))
        await controller.on_file_loaded(URL_A)
        assert controller.state is ChatState.NO_CHAT_AVAILABLE
        assert host.payloads(hostmsg.CHAT_INFO) == [{"message": "No chat data available for this video"}]
        assert yt.requests == []

    @pytest.mark.asyncio
    async def test_probe_failure(self):
        host = RecordingHost()
        probe = _probe(None, returncode=1, stderr="ERROR: Private video")
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=probe)
        await controller.on_file_loaded(URL_A)
        assert controller.state is ChatState.ERROR
        error = host.payloads(hostmsg.CHAT_ERROR)[0]
        assert error["message"] == "Failed to check chat availability"
        assert "Private video" in error["error"]


class TestArchivedFlow:
    @pytest.mark.asyncio
    async def test_success_delivers_chunks(self):
        yt = FakeYouTube()
        yt.watch_html = watch_page()
        yt.chat_page_html = chat_replay_page(replay_response([
            replay_action(1000, text_item("m1", "one")),
            replay_action(2000, text_item("m2", "two")),
            replay_action(3000, text_item("m3", "three")),
        ]))
        host = RecordingHost()
        controller = ChatSyncController(host, FetchConfig(chunk_size=2), client=yt.client(), probe=_probe())

        await controller.on_file_loaded(URL_A)

        assert controller.state is ChatState.READY
        chunks = host.payloads(hostmsg.CHAT_DATA_CHUNK)
        assert [c["chunkIndex"] for c in chunks] == [0, 1]
        assert [m["id"] for c in chunks for m in c["chunk"]] == ["m1", "m2", "m3"]
        assert host.payloads(hostmsg.CHAT_DATA_COMPLETE) == [{"totalMessages": 3}]
        assert host.payloads(hostmsg.CHAT_LOADING) == [{"loading": True}, {"loading": False}]
        assert host.payloads(hostmsg.CHAT_PROGRESS)[-1]["status"] == "complete"
        # Loading goes up before any progress is reported
        names = host.names()
        assert names.index(hostmsg.CHAT_LOADING) < names.index(hostmsg.CHAT_PROGRESS)

    @pytest.mark.asyncio
    async def test_fetch_failure(self):
        host = RecordingHost()
        fetcher = StaticFetcher(Failure("HTTP 500", ErrorKind.TRANSPORT))
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe(), fetcher=fetcher)
        await controller.on_file_loaded(URL_A)
        assert controller.state is ChatState.ERROR
        assert host.payloads(hostmsg.CHAT_ERROR) == [{"message": "Failed to fetch chat replay", "error": "HTTP 500"}]
        assert host.payloads(hostmsg.CHAT_LOADING)[-1] == {"loading": False}

    @pytest.mark.asyncio
    async def test_no_replay_is_info(self):
        host = RecordingHost()
        fetcher = StaticFetcher(Failure("No chat replay available for this video", ErrorKind.NO_CHAT))
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe(), fetcher=fetcher)
        await controller.on_file_loaded(URL_A)
        assert controller.state is ChatState.NO_CHAT_AVAILABLE
        assert host.payloads(hostmsg.CHAT_ERROR) == []
        assert host.payloads(hostmsg.CHAT_LOADING)[-1] == {"loading": False}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported(self):
        host = RecordingHost()
        fetcher = StaticFetcher(RuntimeError("kaboom"))
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe(), fetcher=fetcher)
        await controller.on_file_loaded(URL_A)
        assert controller.state is ChatState.ERROR
        error = host.payloads(hostmsg.CHAT_ERROR)[0]
        assert error["message"] == UNEXPECTED_ERROR_MESSAGE
        assert "kaboom" in error["error"]
        assert host.payloads(hostmsg.CHAT_LOADING)[-1] == {"loading": False}


class TestSupersession:
    @pytest.mark.asyncio
    async def test_stale_archived_result_is_dropped(self):
        """A slow fetch for A finishing after B was loaded changes nothing."""
        started = asyncio.Event()
        release = asyncio.Event()

        class BlockingFetcher:
            async def fetch_all(self, video_id, on_progress=None):
                if video_id == "AAAAAAAAAAA":
                    started.set()
                    await release.wait()
                    return ArchivedFetchResult(video_id, [_msg("from-a")])
                return ArchivedFetchResult(video_id, [_msg("from-b")])

        host = RecordingHost()
        controller = ChatSyncController(
            host, client=FakeYouTube().client(), probe=_probe(), fetcher=BlockingFetcher()
        )

        task_a = asyncio.create_task(controller.on_file_loaded(URL_A))
        await started.wait()
        await controller.on_file_loaded(URL_B)
        sent_after_b = len(host.sent)

        release.set()
        await task_a

        assert len(host.sent) == sent_after_b
        assert controller.state is ChatState.READY
        assert controller.st.video_id == "BBBBBBBBBBB"
        assert [m.id for m in controller.st.timeline] == ["from-b"]
        assert host.payloads(hostmsg.CHAT_DATA_COMPLETE) == [{"totalMessages": 1}]

    @pytest.mark.asyncio
    async def test_new_load_cancels_live_polling(self):
        yt = FakeYouTube()
        yt.watch_html = watch_page()
        yt.live = lambda body: live_response(
            [live_action(text_item("l1", "hi"))],
            {"timedContinuationData": {"continuation": "MORE", "timeoutMs": 1000}},
        )
        sleeping = asyncio.Event()

        async def block(seconds):
            sleeping.set()
            await asyncio.Event().wait()

        host = RecordingHost()
        controller = ChatSyncController(host, client=yt.client(), probe=_probe(LIVE_INFO), sleep=block)
        await controller.on_file_loaded(URL_A)
        task = controller.st.live_task
        await sleeping.wait()
        assert controller.state is ChatState.READY

        await controller.on_file_loaded("https://vimeo.com/1")
        with pytest.raises(asyncio.CancelledError):
            await task
        assert controller.st.live_task is None
        assert controller.state is ChatState.NOT_YOUTUBE
        assert len(controller.st.timeline) == 0


class TestLiveFlow:
    @pytest.mark.asyncio
    async def test_live_until_end(self):
        yt = FakeYouTube()
        yt.watch_html = watch_page()

        def live(body):
            if body["continuation"] == "INITIAL":
                return live_response(
                    [live_action(text_item("l1", "hello"))],
                    {"timedContinuationData": {"continuation": "NEXT", "timeoutMs": 2000}},
                )
            return live_response([live_action(text_item("l2", "bye"))])

        yt.live = live
        host = RecordingHost()
        controller = ChatSyncController(host, client=yt.client(), probe=_probe(LIVE_INFO), sleep=_no_sleep)
        await controller.on_file_loaded(URL_A)
        await controller.st.live_task

        batches = host.payloads(hostmsg.LIVE_CHAT_MESSAGES)
        assert [[m["id"] for m in b["messages"]] for b in batches] == [["l1"], ["l2"]]
        assert all(m["timestamp"] == 0 for b in batches for m in b["messages"])
        assert controller.state is ChatState.READY
        assert host.payloads(hostmsg.CHAT_INFO) == [{"message": "Live stream has ended"}]
        assert controller.st.is_live
        assert [m.id for m in controller.st.timeline] == ["l1", "l2"]

    @pytest.mark.asyncio
    async def test_not_live_falls_back_to_archived(self):
        """The stream ended between the probe and the live bootstrap."""
        responses = [LIVE_INFO, REPLAY_INFO]

        async def runner(program, args, cwd=None):
            return ProcessResult(0, json.dumps(responses.pop(0)), "")

        host = RecordingHost()
        fetcher = StaticFetcher(ArchivedFetchResult("AAAAAAAAAAA", [_msg("r1")]))
        controller = ChatSyncController(
            host, client=FakeYouTube().client(), probe=AvailabilityProbe(runner=runner), fetcher=fetcher
        )
        await controller.on_file_loaded(URL_A)

        assert fetcher.calls == ["AAAAAAAAAAA"]
        assert controller.state is ChatState.READY
        assert controller.st.live_task is None
        assert host.payloads(hostmsg.CHAT_ERROR) == []
        assert host.payloads(hostmsg.CHAT_DATA_COMPLETE) == [{"totalMessages": 1}]
        assert host.payloads(hostmsg.CHAT_LOADING) == [{"loading": True}, {"loading": False}]

    @pytest.mark.asyncio
    async def test_live_buffer_is_capped(self):
        """Only the newest messages are kept for re-sync while a stream runs."""
        yt = FakeYouTube()
        yt.watch_html = watch_page()
        pages = {"INITIAL": ("l1", "l2", "P2"), "P2": ("l3", "l4", "P3"), "P3": ("l5", None, None)}

        def live(body):
            first, second, nxt = pages[body["continuation"]]
            actions = [live_action(text_item(first, first))]
            if second:
                actions.append(live_action(text_item(second, second)))
            cont = {"timedContinuationData": {"continuation": nxt, "timeoutMs": 1000}} if nxt else None
            return live_response(actions, cont)

        yt.live = live
        host = RecordingHost()
        controller = ChatSyncController(
            host, FetchConfig(live_buffer_max=3), client=yt.client(), probe=_probe(LIVE_INFO), sleep=_no_sleep
        )
        await controller.on_file_loaded(URL_A)
        await controller.st.live_task
        assert [m.id for m in controller.st.timeline] == ["l3", "l4", "l5"]

        host.clear()
        controller.on_ready()
        replayed = host.payloads(hostmsg.LIVE_CHAT_MESSAGES)
        assert [[m["id"] for m in p["messages"]] for p in replayed] == [["l3", "l4", "l5"]]

    @pytest.mark.asyncio
    async def test_live_bootstrap_failure(self):
        yt = FakeYouTube()  # watch page 404
        host = RecordingHost()
        controller = ChatSyncController(host, client=yt.client(), probe=_probe(LIVE_INFO))
        await controller.on_file_loaded(URL_A)
        assert controller.state is ChatState.ERROR
        assert host.payloads(hostmsg.CHAT_ERROR)[0]["message"] == "Failed to start live chat"
        assert host.payloads(hostmsg.CHAT_LOADING)[-1] == {"loading": False}


class TestHostCommands:
    @pytest.mark.asyncio
    async def test_retry_after_error(self):
        host = RecordingHost()
        fetcher = StaticFetcher(
            Failure("HTTP 503", ErrorKind.TRANSPORT),
            ArchivedFetchResult("AAAAAAAAAAA", [_msg("m1")]),
        )
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe(), fetcher=fetcher)
        await controller.on_file_loaded(URL_A)
        assert controller.state is ChatState.ERROR

        host.clear()
        await controller.handle_command(hostmsg.RETRY_FETCH)
        assert controller.state is ChatState.READY
        assert fetcher.calls == ["AAAAAAAAAAA", "AAAAAAAAAAA"]
        assert host.payloads(hostmsg.CHAT_DATA_COMPLETE) == [{"totalMessages": 1}]

    @pytest.mark.asyncio
    async def test_ready_replays_state(self):
        host = RecordingHost({"maxMessages": 50})
        fetcher = StaticFetcher(ArchivedFetchResult("AAAAAAAAAAA", [_msg("m1", 1.0), _msg("m2", 2.0)]))
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe(), fetcher=fetcher)
        await controller.on_file_loaded(URL_A)
        controller.on_position_changed(1.5)

        host.clear()
        await controller.handle_command(hostmsg.READY)

        assert host.names() == [
            hostmsg.PREFERENCES_UPDATE,
            hostmsg.CHAT_LOADING,
            hostmsg.CHAT_DATA_CHUNK,
            hostmsg.CHAT_DATA_COMPLETE,
            hostmsg.POSITION_UPDATE,
        ]
        assert host.payloads(hostmsg.PREFERENCES_UPDATE)[0]["maxMessages"] == 50
        assert host.payloads(hostmsg.POSITION_UPDATE) == [{"position": 1.5}]

    @pytest.mark.asyncio
    async def test_position_ignored_without_messages(self):
        host = RecordingHost()
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe())
        await controller.on_file_loaded("https://vimeo.com/1")
        host.clear()
        controller.on_position_changed(12.0)
        assert host.sent == []

    @pytest.mark.asyncio
    async def test_unknown_command_ignored(self):
        host = RecordingHost()
        controller = ChatSyncController(host, client=FakeYouTube().client(), probe=_probe())
        await controller.handle_command("bogus", {})
        assert host.sent == []

    @pytest.mark.asyncio
    async def test_close_stops_live_task(self):
        yt = FakeYouTube()
        yt.watch_html = watch_page()
        yt.live = lambda body: live_response(
            [], {"timedContinuationData": {"continuation": "MORE", "timeoutMs": 1000}}
        )
        sleeping = asyncio.Event()

        async def block(seconds):
            sleeping.set()
            await asyncio.Event().wait()

        controller = ChatSyncController(RecordingHost(), client=yt.client(), probe=_probe(LIVE_INFO), sleep=block)
        await controller.on_file_loaded(URL_A)
        task = controller.st.live_task
        await sleeping.wait()
        # Connected but no batch yet
        assert controller.state is ChatState.LIVE_FETCHING

        await controller.close()
        assert task.cancelled()
        assert controller.st.live_task is None
