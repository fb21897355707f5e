"""Normalized chat message schema."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union


class MessageType(str, Enum):
    """Closed set of message variants."""
    TEXT = "text"
    SUPERCHAT = "superchat"
    SUPERSTICKER = "supersticker"
    MEMBERSHIP = "membership"
    GIFT = "gift"
    SYSTEM = "system"


class BadgeType(str, Enum):
    VERIFIED = "verified"
    OWNER = "owner"
    MODERATOR = "moderator"
    MEMBER = "member"


# Type-specific optional fields each variant may carry.
TYPE_FIELDS: Dict[MessageType, FrozenSet[str]] = {
    MessageType.TEXT: frozenset(),
    MessageType.SUPERCHAT: frozenset({"amount", "colors"}),
    MessageType.SUPERSTICKER: frozenset({"amount", "colors", "sticker_url"}),
    MessageType.MEMBERSHIP: frozenset({"membership_level"}),
    MessageType.GIFT: frozenset({"gift_count"}),
    MessageType.SYSTEM: frozenset(),
}

_TYPED_FIELDS = ("amount", "colors", "sticker_url", "membership_level", "gift_count")


@dataclass(frozen=True)
class AuthorBadge:
    type: BadgeType
    label: str = ""
    custom_icon: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type.value, "label": self.label}
        if self.custom_icon is not None:
            out["customIcon"] = self.custom_icon
        return out


@dataclass(frozen=True)
class MessageEmoji:
    emoji_id: str
    shortcut: Optional[str] = None
    image_url: Optional[str] = None
    is_custom: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"emojiId": self.emoji_id}
        if self.shortcut is not None:
            out["shortcut"] = self.shortcut
        if self.image_url is not None:
            out["imageUrl"] = self.image_url
        if self.is_custom is not None:
            out["isCustom"] = self.is_custom
        return out


@dataclass(frozen=True)
class TextRun:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class EmojiRun:
    emoji: MessageEmoji

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "emoji", "emoji": self.emoji.to_dict()}


MessageRun = Union[TextRun, EmojiRun]


@dataclass(frozen=True)
class SuperChatColors:
    """Paid-message theming colors as ``#rrggbbaa`` strings."""

    header_background_color: Optional[str] = None
    header_text_color: Optional[str] = None
    body_background_color: Optional[str] = None
    body_text_color: Optional[str] = None
    author_name_text_color: Optional[str] = None

    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.header_background_color,
                self.header_text_color,
                self.body_background_color,
                self.body_text_color,
                self.author_name_text_color,
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        pairs = (
            ("headerBackgroundColor", self.header_background_color),
            ("headerTextColor", self.header_text_color),
            ("bodyBackgroundColor", self.body_background_color),
            ("bodyTextColor", self.body_text_color),
            ("authorNameTextColor", self.author_name_text_color),
        )
        return {k: v for k, v in pairs if v is not None}


@dataclass(frozen=True)
class ChatMessage:
    """A single normalized chat message.

    ``timestamp`` is seconds from video start for replay messages and 0 for
    live messages. Optional fields that do not belong to ``type`` must stay
    None; construction fails otherwise.
    """

    id: str
    type: MessageType
    timestamp: float
    author: str
    message: str
    author_photo: Optional[str] = None
    author_channel_id: Optional[str] = None
    author_badges: Optional[Tuple[AuthorBadge, ...]] = None
    message_runs: Optional[Tuple[MessageRun, ...]] = None
    timestamp_text: Optional[str] = None
    amount: Optional[str] = None
    colors: Optional[SuperChatColors] = None
    sticker_url: Optional[str] = None
    membership_level: Optional[str] = None
    gift_count: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.type, MessageType):
            object.__setattr__(self, "type", MessageType(self.type))
        if self.timestamp < 0:
            raise ValueError(f"timestamp must be non-negative, got {self.timestamp}")
        allowed = TYPE_FIELDS[self.type]
        for name in _TYPED_FIELDS:
            if name not in allowed and getattr(self, name) is not None:
                raise ValueError(f"{name} is not valid for {self.type.value} messages")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, omitting absent optionals."""
        out: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "author": self.author,
            "message": self.message,
        }
        optional: Tuple[Tuple[str, Any], ...] = (
            ("authorPhoto", self.author_photo),
            ("authorChannelId", self.author_channel_id),
            ("authorBadges", [b.to_dict() for b in self.author_badges] if self.author_badges else None),
            ("messageRuns", [r.to_dict() for r in self.message_runs] if self.message_runs else None),
            ("timestampText", self.timestamp_text),
            ("amount", self.amount),
            ("colors", self.colors.to_dict() if self.colors else None),
            ("stickerUrl", self.sticker_url),
            ("membershipLevel", self.membership_level),
            ("giftCount", self.gift_count),
        )
        for key, value in optional:
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class Segment:
    """A worker's half-open offset range ``[start_offset_ms, end_offset_ms)``."""

    worker_index: int
    start_offset_ms: int
    end_offset_ms: int

    def contains(self, offset_ms: float) -> bool:
        return self.start_offset_ms <= offset_ms < self.end_offset_ms


@dataclass
class FetchProgress:
    """Progress snapshot reported by the archived fetcher."""

    fetched_count: int = 0
    current_offset_ms: int = 0
    status: str = "fetching"  # fetching|complete|error
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetchedCount": self.fetched_count,
            "currentOffsetMs": self.current_offset_ms,
            "status": self.status,
            "message": self.message,
        }
