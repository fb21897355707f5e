from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .chat.archived import ArchivedChatFetcher
from .chat.live import LiveChatPoller, run_live_loop
from .chat.models import ChatMessage, FetchProgress
from .doctor import run_doctor
from .errors import Failure
from .innertube.client import InnertubeClient
from .innertube.probe import AvailabilityProbe
from .innertube.session import SessionBootstrapper
from .logging_config import setup_logging
from .orchestrator import extract_video_id
from .profile import FetchConfig, load_profile


def _video_id(value: str) -> str:
    """Accept a watch/share URL or a bare video id."""
    if "/" not in value:
        return value
    video_id = extract_video_id(value)
    if not video_id:
        raise SystemExit(f"Could not extract YouTube video ID from {value}")
    return video_id


def _config(args: argparse.Namespace) -> FetchConfig:
    config = FetchConfig.from_profile(load_profile(getattr(args, "profile", None)))
    workers = getattr(args, "workers", None)
    if workers:
        config = dataclasses.replace(config, worker_count=max(1, workers))
    return config


def _print_progress(progress: FetchProgress) -> None:
    print(f"[{progress.status}] {progress.message}", file=sys.stderr)


async def _fetch(args: argparse.Namespace) -> int:
    config = _config(args)
    video_id = _video_id(args.url)
    async with InnertubeClient(config) as client:
        result = await ArchivedChatFetcher(client, config).fetch_all(video_id, _print_progress)

    if isinstance(result, Failure):
        print(f"Failed: {result.error}", file=sys.stderr)
        return 1

    text = json.dumps([m.to_dict() for m in result.messages], indent=2, ensure_ascii=False)
    if args.out:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(text, encoding="utf-8")
        print(f"Wrote {len(result.messages)} messages to {args.out}", file=sys.stderr)
    else:
        print(text)
    return 0


def cmd_fetch(args: argparse.Namespace) -> None:
    raise SystemExit(asyncio.run(_fetch(args)))


async def _live(args: argparse.Namespace) -> int:
    config = _config(args)
    video_id = _video_id(args.url)
    async with InnertubeClient(config) as client:
        bootstrapper = SessionBootstrapper(client, AvailabilityProbe(config.ytdlp_path))
        session = await bootstrapper.bootstrap_live(video_id)
        if isinstance(session, Failure):
            print(f"Failed: {session.error}", file=sys.stderr)
            return 1

        def on_messages(messages: List[ChatMessage]) -> None:
            for msg in messages:
                print(json.dumps(msg.to_dict(), ensure_ascii=False), flush=True)

        def on_failure(failure: Failure) -> None:
            print(f"Poll failed, retrying: {failure.error}", file=sys.stderr)

        def on_end() -> None:
            print("Live stream has ended", file=sys.stderr)

        await run_live_loop(
            LiveChatPoller(client, config), session, on_messages, on_failure, on_end, max_polls=args.max_polls
        )
    return 0


def cmd_live(args: argparse.Namespace) -> None:
    try:
        raise SystemExit(asyncio.run(_live(args)))
    except KeyboardInterrupt:
        raise SystemExit(130)


def cmd_probe(args: argparse.Namespace) -> None:
    config = _config(args)
    result = asyncio.run(AvailabilityProbe(config.ytdlp_path).probe(_video_id(args.url)))
    print(json.dumps(result.to_dict(), indent=2))
    if isinstance(result, Failure):
        raise SystemExit(1)


def cmd_doctor(args: argparse.Namespace) -> None:
    rep = run_doctor(_config(args).ytdlp_path)
    print("ytchatsync doctor\n")
    for name, data in rep.checks.items():
        print(f"- {name}:")
        for k, v in data.items():
            print(f"    {k}: {v}")
    print("\nOK" if rep.ok else "\nNOT OK (fix missing requirements above)")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="ytchatsync", description="YouTube chat fetcher")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    f = sub.add_parser("fetch", help="Download the full chat replay of a finished broadcast as JSON.")
    f.add_argument("url", type=str, help="Video URL or id")
    f.add_argument("--out", type=Path, default=None)
    f.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    f.add_argument("--workers", type=int, default=None, help="Concurrent segment workers")
    f.set_defaults(func=cmd_fetch)

    lv = sub.add_parser("live", help="Follow a live stream's chat, one JSON message per line.")
    lv.add_argument("url", type=str, help="Video URL or id")
    lv.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    lv.add_argument("--max-polls", type=int, default=None)
    lv.set_defaults(func=cmd_live)

    p = sub.add_parser("probe", help="Check whether a video has chat and whether it is live.")
    p.add_argument("url", type=str, help="Video URL or id")
    p.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    p.set_defaults(func=cmd_probe)

    d = sub.add_parser("doctor", help="Check local system dependencies (yt-dlp).")
    d.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    d.set_defaults(func=cmd_doctor)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    args.func(args)


if __name__ == "__main__":
    main()
