"""Chat message model, renderer decoding and the archived/live fetchers."""

from .models import (
    AuthorBadge,
    BadgeType,
    ChatMessage,
    EmojiRun,
    FetchProgress,
    MessageEmoji,
    MessageType,
    Segment,
    SuperChatColors,
    TextRun,
)
from .normalize import ActionParser, MessageIdSequence, best_thumbnail, color_to_hex, decode_item
from .archived import ArchivedChatFetcher, ArchivedFetchResult, merge_messages, partition_segments
from .live import LiveChatPoller, LivePollResult, extract_live_continuation, next_delay_ms, run_live_loop
from .store import ChatTimeline

__all__ = [
    "AuthorBadge",
    "BadgeType",
    "ChatMessage",
    "EmojiRun",
    "FetchProgress",
    "MessageEmoji",
    "MessageType",
    "Segment",
    "SuperChatColors",
    "TextRun",
    "ActionParser",
    "MessageIdSequence",
    "best_thumbnail",
    "color_to_hex",
    "decode_item",
    "ArchivedChatFetcher",
    "ArchivedFetchResult",
    "merge_messages",
    "partition_segments",
    "LiveChatPoller",
    "LivePollResult",
    "extract_live_continuation",
    "next_delay_ms",
    "run_live_loop",
    "ChatTimeline",
]
