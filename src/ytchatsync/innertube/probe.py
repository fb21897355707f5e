"""yt-dlp metadata probe used to decide whether chat exists and is live.

The probe runs ``yt-dlp --dump-json --no-download <url>`` as an external
process; no media is downloaded.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..errors import Failure, ProbeError
from ..utils import subprocess_flags
from .client import watch_url

log = logging.getLogger("ytchatsync.innertube")


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


ProcessRunner = Callable[[str, Sequence[str], Optional[Path]], Awaitable[ProcessResult]]


async def run_process(program: str, args: Sequence[str], cwd: Optional[Path] = None) -> ProcessResult:
    """Run an external program and capture its exit code and output."""
    proc = await asyncio.create_subprocess_exec(
        program,
        *args,
        cwd=str(cwd) if cwd else None,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **subprocess_flags(),
    )
    stdout, stderr = await proc.communicate()
    return ProcessResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", "replace"),
        stderr=stderr.decode("utf-8", "replace"),
    )


@dataclass(frozen=True)
class ProbeResult:
    """Subset of the yt-dlp info dict relevant to chat acquisition."""

    video_id: str
    is_live: bool = False
    has_live_chat: bool = False
    title: str = ""
    duration_seconds: float = 0.0

    success = True

    @property
    def chat_available(self) -> bool:
        return self.is_live or self.has_live_chat

    @classmethod
    def from_info(cls, info: Dict[str, Any], video_id: str = "") -> "ProbeResult":
        subtitles = info.get("subtitles")
        has_live_chat = isinstance(subtitles, dict) and "live_chat" in subtitles
        try:
            duration = float(info.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0.0
        return cls(
            video_id=str(info.get("id") or video_id),
            is_live=info.get("is_live") is True,
            has_live_chat=has_live_chat,
            title=str(info.get("title") or ""),
            duration_seconds=duration,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_id": self.video_id,
            "is_live": self.is_live,
            "has_live_chat": self.has_live_chat,
            "chat_available": self.chat_available,
            "title": self.title,
            "duration_seconds": self.duration_seconds,
        }


class AvailabilityProbe:
    """Probe a video through yt-dlp.

    Args:
        ytdlp_path: yt-dlp executable name or path
        runner: Process runner (injectable for tests)
        cwd: Working directory for the external process
    """

    def __init__(
        self,
        ytdlp_path: str = "yt-dlp",
        runner: Optional[ProcessRunner] = None,
        cwd: Optional[Path] = None,
    ):
        self.ytdlp_path = ytdlp_path
        self.runner = runner or run_process
        self.cwd = cwd

    def build_args(self, video_id: str) -> List[str]:
        return ["--dump-json", "--no-download", watch_url(video_id)]

    async def _run(self, video_id: str) -> ProbeResult:
        try:
            result = await self.runner(self.ytdlp_path, self.build_args(video_id), self.cwd)
        except OSError as e:
            raise ProbeError(f"Could not run {self.ytdlp_path}: {e}") from e

        if result.returncode != 0:
            raise ProbeError(f"yt-dlp failed (code {result.returncode}): {result.stderr.strip()[:500]}")

        try:
            info = json.loads(result.stdout)
        except ValueError as e:
            raise ProbeError("Failed to parse yt-dlp output") from e
        if not isinstance(info, dict):
            raise ProbeError("Failed to parse yt-dlp output")

        probe = ProbeResult.from_info(info, video_id)
        log.info(
            f"[PROBE] {video_id}: is_live={probe.is_live} live_chat_track={probe.has_live_chat}"
        )
        return probe

    async def probe(self, video_id: str) -> Union[ProbeResult, Failure]:
        try:
            return await self._run(video_id)
        except ProbeError as e:
            log.warning(f"[PROBE] {video_id}: {e}")
            return Failure.from_exception(e)
