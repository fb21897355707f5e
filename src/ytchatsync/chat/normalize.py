"""Decode YouTube chat renderer payloads into normalized ChatMessage values.

Supports the six renderer shapes seen in live and replay chat:
  - liveChatTextMessageRenderer (text)
  - liveChatPaidMessageRenderer (superchat)
  - liveChatPaidStickerRenderer (supersticker)
  - liveChatMembershipItemRenderer (membership)
  - liveChatSponsorshipsGiftPurchaseAnnouncementRenderer (gift)
  - liveChatViewerEngagementMessageRenderer (system)

Unknown renderer kinds decode to None so that new upstream shapes never
abort a batch.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..logging_config import RateLimitedLogger
from ..utils import dig
from .models import (
    AuthorBadge,
    BadgeType,
    ChatMessage,
    EmojiRun,
    MessageEmoji,
    MessageRun,
    MessageType,
    SuperChatColors,
    TextRun,
)

log = logging.getLogger("ytchatsync.chat")

UNKNOWN_AUTHOR = "Unknown"
SYSTEM_AUTHOR = "YouTube"

_BADGE_TYPES = {b.value: b for b in BadgeType}


class MessageIdSequence:
    """Strictly increasing per-session counter for synthesized message ids."""

    def __init__(self, source: str):
        self.source = source
        self._next = 0

    def next_index(self) -> int:
        index = self._next
        self._next += 1
        return index

    def make_id(self, index: int) -> str:
        return f"{self.source}-{index}"

    def is_synthesized(self, msg_id: str) -> bool:
        prefix = f"{self.source}-"
        return msg_id.startswith(prefix) and msg_id[len(prefix):].isdigit()

    def reset(self) -> None:
        self._next = 0


def color_to_hex(value: Any) -> Optional[str]:
    """Convert a signed 32-bit ARGB integer into a ``#rrggbbaa`` string."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    digits = f"{value & 0xFFFFFFFF:08x}"
    return f"#{digits[2:]}{digits[:2]}"


def best_thumbnail(thumbnails: Any) -> Optional[str]:
    """Return the URL of the widest thumbnail; entries without width sort last."""
    if not isinstance(thumbnails, list):
        return None
    best_url: Optional[str] = None
    best_width = -1
    for thumb in thumbnails:
        if not isinstance(thumb, dict) or not isinstance(thumb.get("url"), str):
            continue
        width = thumb.get("width")
        width = width if isinstance(width, (int, float)) and not isinstance(width, bool) else -1
        if best_url is None or width > best_width:
            best_url = thumb["url"]
            best_width = width
    return best_url


def parse_runs(runs: Any) -> Tuple[str, Tuple[MessageRun, ...]]:
    """Flatten message runs to plain text while keeping the rich run sequence."""
    if not isinstance(runs, list):
        return "", ()

    parts: List[str] = []
    out: List[MessageRun] = []
    for run in runs:
        if not isinstance(run, dict):
            continue
        text = run.get("text")
        if isinstance(text, str) and text:
            parts.append(text)
            out.append(TextRun(text=text))
            continue
        emoji = run.get("emoji")
        if isinstance(emoji, dict):
            emoji_id = emoji.get("emojiId") if isinstance(emoji.get("emojiId"), str) else ""
            shortcut = dig(emoji, "shortcuts", 0, expected=str)
            is_custom = emoji.get("isCustomEmoji")
            parts.append(shortcut or emoji_id)
            out.append(
                EmojiRun(
                    emoji=MessageEmoji(
                        emoji_id=emoji_id,
                        shortcut=shortcut,
                        image_url=dig(emoji, "image", "thumbnails", 0, "url", expected=str),
                        is_custom=is_custom if isinstance(is_custom, bool) else None,
                    )
                )
            )
    return "".join(parts), tuple(out)


def parse_badges(badges: Any) -> Optional[Tuple[AuthorBadge, ...]]:
    """Map author badge renderers onto the four badge kinds.

    Returns None rather than an empty tuple when nothing matched.
    """
    if not isinstance(badges, list):
        return None

    result: List[AuthorBadge] = []
    for badge in badges:
        renderer = dig(badge, "liveChatAuthorBadgeRenderer", expected=dict)
        if renderer is None:
            continue
        icon_type = dig(renderer, "icon", "iconType", expected=str)
        badge_type = _BADGE_TYPES.get(icon_type.lower()) if icon_type else None
        custom = renderer.get("customThumbnail")
        if badge_type is None and custom:
            badge_type = BadgeType.MEMBER
        if badge_type is None:
            continue
        tooltip = renderer.get("tooltip")
        result.append(
            AuthorBadge(
                type=badge_type,
                label=tooltip if isinstance(tooltip, str) else "",
                custom_icon=best_thumbnail(dig(custom, "thumbnails")),
            )
        )
    return tuple(result) or None


def parse_paid_colors(renderer: Dict[str, Any]) -> Optional[SuperChatColors]:
    colors = SuperChatColors(
        header_background_color=color_to_hex(renderer.get("headerBackgroundColor")),
        header_text_color=color_to_hex(renderer.get("headerTextColor")),
        body_background_color=color_to_hex(renderer.get("bodyBackgroundColor")),
        body_text_color=color_to_hex(renderer.get("bodyTextColor")),
        author_name_text_color=color_to_hex(renderer.get("authorNameTextColor")),
    )
    return None if colors.is_empty() else colors


def parse_sticker_colors(renderer: Dict[str, Any]) -> Optional[SuperChatColors]:
    colors = SuperChatColors(
        body_background_color=color_to_hex(renderer.get("backgroundColor")),
        author_name_text_color=color_to_hex(renderer.get("authorNameTextColor")),
    )
    return None if colors.is_empty() else colors


def _has_content(text: str, runs: Tuple[MessageRun, ...]) -> bool:
    return bool(text.strip()) or any(isinstance(r, EmojiRun) for r in runs)


def _author_fields(r: Dict[str, Any]) -> Dict[str, Any]:
    channel_id = r.get("authorExternalChannelId")
    return {
        "author": dig(r, "authorName", "simpleText", expected=str) or UNKNOWN_AUTHOR,
        "author_photo": best_thumbnail(dig(r, "authorPhoto", "thumbnails")),
        "author_channel_id": channel_id if isinstance(channel_id, str) else None,
    }


def _common(r: Dict[str, Any], msg_id: str, timestamp: float) -> Dict[str, Any]:
    rid = r.get("id")
    return {
        "id": rid if isinstance(rid, str) and rid else msg_id,
        "timestamp": timestamp,
        "timestamp_text": dig(r, "timestampText", "simpleText", expected=str),
    }


def _decode_text(r: Dict[str, Any], msg_id: str, timestamp: float) -> Optional[ChatMessage]:
    text, runs = parse_runs(dig(r, "message", "runs"))
    if not _has_content(text, runs):
        return None
    return ChatMessage(
        type=MessageType.TEXT,
        message=text,
        message_runs=runs or None,
        author_badges=parse_badges(r.get("authorBadges")),
        **_common(r, msg_id, timestamp),
        **_author_fields(r),
    )


def _decode_paid(r: Dict[str, Any], msg_id: str, timestamp: float) -> Optional[ChatMessage]:
    text, runs = parse_runs(dig(r, "message", "runs"))
    return ChatMessage(
        type=MessageType.SUPERCHAT,
        message=text or "(Super Chat)",
        message_runs=runs or None,
        author_badges=parse_badges(r.get("authorBadges")),
        amount=dig(r, "purchaseAmountText", "simpleText", expected=str),
        colors=parse_paid_colors(r),
        **_common(r, msg_id, timestamp),
        **_author_fields(r),
    )


def _decode_sticker(r: Dict[str, Any], msg_id: str, timestamp: float) -> Optional[ChatMessage]:
    return ChatMessage(
        type=MessageType.SUPERSTICKER,
        message="(Super Sticker)",
        author_badges=parse_badges(r.get("authorBadges")),
        amount=dig(r, "purchaseAmountText", "simpleText", expected=str),
        sticker_url=best_thumbnail(dig(r, "sticker", "thumbnails")),
        colors=parse_sticker_colors(r),
        **_common(r, msg_id, timestamp),
        **_author_fields(r),
    )


def _decode_membership(r: Dict[str, Any], msg_id: str, timestamp: float) -> Optional[ChatMessage]:
    header_text, _ = parse_runs(dig(r, "headerSubtext", "runs"))
    text, runs = parse_runs(dig(r, "message", "runs"))
    return ChatMessage(
        type=MessageType.MEMBERSHIP,
        message=text or header_text or "(New Member)",
        message_runs=runs or None,
        author_badges=parse_badges(r.get("authorBadges")),
        membership_level=header_text or None,
        **_common(r, msg_id, timestamp),
        **_author_fields(r),
    )


_GIFT_COUNT_RE = re.compile(r"(\d[\d,]*)")


def _decode_gift(r: Dict[str, Any], msg_id: str, timestamp: float) -> Optional[ChatMessage]:
    gift_text, _ = parse_runs(
        dig(r, "header", "liveChatSponsorshipsHeaderRenderer", "primaryText", "runs")
    )
    gift_count: Optional[int] = None
    match = _GIFT_COUNT_RE.search(gift_text)
    if match:
        gift_count = int(match.group(1).replace(",", ""))
    return ChatMessage(
        type=MessageType.GIFT,
        message=gift_text or "(Gift Membership)",
        gift_count=gift_count,
        **_common(r, msg_id, timestamp),
        **_author_fields(r),
    )


def _decode_engagement(r: Dict[str, Any], msg_id: str, timestamp: float) -> Optional[ChatMessage]:
    text, runs = parse_runs(dig(r, "message", "runs"))
    if not _has_content(text, runs):
        return None
    common = _common(r, msg_id, timestamp)
    common["timestamp_text"] = None
    return ChatMessage(
        type=MessageType.SYSTEM,
        author=SYSTEM_AUTHOR,
        message=text,
        message_runs=runs or None,
        **common,
    )


_Decoder = Callable[[Dict[str, Any], str, float], Optional[ChatMessage]]

# Dispatch order matters only for malformed items carrying several renderers.
RENDERER_DECODERS: Tuple[Tuple[str, _Decoder], ...] = (
    ("liveChatTextMessageRenderer", _decode_text),
    ("liveChatPaidMessageRenderer", _decode_paid),
    ("liveChatPaidStickerRenderer", _decode_sticker),
    ("liveChatMembershipItemRenderer", _decode_membership),
    ("liveChatSponsorshipsGiftPurchaseAnnouncementRenderer", _decode_gift),
    ("liveChatViewerEngagementMessageRenderer", _decode_engagement),
)


def decode_item(item: Any, timestamp: float, ids: MessageIdSequence) -> Optional[ChatMessage]:
    """Decode one chat item into a ChatMessage, or None if nothing displayable.

    Every call consumes one sequence index, so synthesized ids stay unique
    within the session even when some items are dropped.
    """
    index = ids.next_index()
    if not isinstance(item, dict):
        return None
    for key, decoder in RENDERER_DECODERS:
        renderer = item.get(key)
        if isinstance(renderer, dict):
            return decoder(renderer, ids.make_id(index), max(0.0, float(timestamp)))
    return None


def _parse_offset_ms(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class ActionParser:
    """Turn action lists into messages, skipping malformed items.

    Failures are logged through a rate limiter so a systematically broken
    payload does not flood the log.
    """

    def __init__(self, ids: MessageIdSequence, *, log_every: int = 50):
        self.ids = ids
        self.failures = RateLimitedLogger(log, every=log_every)

    def _decode(self, item: Any, timestamp: float, out: List[ChatMessage]) -> None:
        try:
            msg = decode_item(item, timestamp, self.ids)
        except (TypeError, ValueError, AttributeError) as e:
            self.failures.log("[CHAT] Skipping undecodable chat item: %s", e)
            return
        if msg is not None:
            out.append(msg)

    def _replay_action(self, action: Any, out: List[ChatMessage]) -> None:
        if not isinstance(action, dict):
            return
        replay = action.get("replayChatItemAction")
        if isinstance(replay, dict):
            offset_ms = _parse_offset_ms(replay.get("videoOffsetTimeMsec")) or 0
            for inner in dig(replay, "actions", expected=list) or []:
                item = dig(inner, "addChatItemAction", "item")
                if item is not None:
                    self._decode(item, offset_ms / 1000.0, out)
            return
        item = dig(action, "addChatItemAction", "item")
        if item is not None:
            self._decode(item, 0.0, out)

    def parse_replay_actions(self, actions: Iterable[Any]) -> List[ChatMessage]:
        """Parse replay actions; offsets come from ``videoOffsetTimeMsec``."""
        messages: List[ChatMessage] = []
        for action in actions or ():
            try:
                self._replay_action(action, messages)
            except (TypeError, ValueError, AttributeError, KeyError) as e:
                self.failures.log("[CHAT] Skipping malformed replay action: %s", e)
        return messages

    def parse_live_actions(self, actions: Iterable[Any]) -> List[ChatMessage]:
        """Parse live actions; live messages carry no video-relative timestamp."""
        messages: List[ChatMessage] = []
        for action in actions or ():
            item = dig(action, "addChatItemAction", "item")
            if item is not None:
                self._decode(item, 0.0, messages)
        return messages


def last_offset_ms(actions: Iterable[Any]) -> Optional[int]:
    """Offset reported by the last replay action that carries one."""
    offset: Optional[int] = None
    for action in actions or ():
        value = _parse_offset_ms(dig(action, "replayChatItemAction", "videoOffsetTimeMsec"))
        if value is not None:
            offset = value
    return offset
