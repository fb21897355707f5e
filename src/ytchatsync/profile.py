from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

import yaml

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

SCROLL_DIRECTIONS = ("bottom-to-top", "top-to-bottom")


def default_profile() -> Dict[str, Any]:
    return {
        "http": {
            "user_agent": DEFAULT_USER_AGENT,
            "accept_language": "en-US,en;q=0.9",
            "timeout_seconds": 30.0,
        },
        "archived": {
            "workers": 10,
            "fallback_duration_ms": 2 * 60 * 60 * 1000,
            "end_margin_ms": 60_000,
        },
        "live": {
            "min_interval_ms": 1000,
            "retry_ms": 5000,
            "default_timeout_ms": 5000,
            "buffer_max": 2000,
        },
        "delivery": {
            "chunk_size": 100,
        },
        "probe": {
            "ytdlp_path": "yt-dlp",
        },
        "logging": {
            "decode_log_every": 50,
        },
        "preferences": {
            "max_messages": 200,
            "scroll_direction": "bottom-to-top",
            "show_timestamp": True,
            "show_author_name": True,
            "show_author_photo": True,
        },
    }


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_profile(profile_path: Optional[Path]) -> Dict[str, Any]:
    """Load a YAML profile and merge it over the defaults.

    Raises:
        FileNotFoundError: If the given path does not exist
        ValueError: If the YAML document is not a mapping
    """
    if profile_path is None:
        return default_profile()

    profile_path = Path(profile_path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping")
    return _deep_merge(default_profile(), data)


@dataclass(frozen=True)
class FetchConfig:
    """Tunable constants for the fetchers and the orchestrator."""

    worker_count: int = 10
    fallback_duration_ms: int = 2 * 60 * 60 * 1000
    end_margin_ms: int = 60_000
    chunk_size: int = 100
    live_min_interval_ms: int = 1000
    live_retry_ms: int = 5000
    live_default_timeout_ms: int = 5000
    live_buffer_max: int = 2000
    request_timeout_s: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "en-US,en;q=0.9"
    ytdlp_path: str = "yt-dlp"
    decode_log_every: int = 50

    @classmethod
    def from_profile(cls, profile: Optional[Mapping[str, Any]] = None) -> "FetchConfig":
        profile = _deep_merge(default_profile(), profile or {})
        http = profile["http"]
        archived = profile["archived"]
        live = profile["live"]
        # YTCS_YTDLP wins over the profile so packaged installs can point at a bundled binary
        ytdlp_path = os.getenv("YTCS_YTDLP") or str(profile["probe"]["ytdlp_path"])
        return cls(
            worker_count=max(1, int(archived["workers"])),
            fallback_duration_ms=int(archived["fallback_duration_ms"]),
            end_margin_ms=int(archived["end_margin_ms"]),
            chunk_size=max(1, int(profile["delivery"]["chunk_size"])),
            live_min_interval_ms=int(live["min_interval_ms"]),
            live_retry_ms=int(live["retry_ms"]),
            live_default_timeout_ms=int(live["default_timeout_ms"]),
            live_buffer_max=max(1, int(live["buffer_max"])),
            request_timeout_s=float(http["timeout_seconds"]),
            user_agent=str(http["user_agent"]),
            accept_language=str(http["accept_language"]),
            ytdlp_path=ytdlp_path,
            decode_log_every=int(profile["logging"]["decode_log_every"]),
        )


# Preference field -> key in the host's persisted preference store
PREFERENCE_KEYS = {
    "max_messages": "maxMessages",
    "scroll_direction": "scrollDirection",
    "show_timestamp": "showTimestamp",
    "show_author_name": "showAuthorName",
    "show_author_photo": "showAuthorPhoto",
}


@dataclass(frozen=True)
class Preferences:
    """Display preferences forwarded to the presentation layer."""

    max_messages: int = 200
    scroll_direction: str = "bottom-to-top"
    show_timestamp: bool = True
    show_author_name: bool = True
    show_author_photo: bool = True

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], defaults: Optional["Preferences"] = None) -> "Preferences":
        """Build preferences from snake_case values, ignoring invalid or missing ones."""
        defaults = defaults or cls()

        def _bool(key: str, default: bool) -> bool:
            value = values.get(key)
            return value if isinstance(value, bool) else default

        max_messages = values.get("max_messages")
        if isinstance(max_messages, bool) or not isinstance(max_messages, int) or max_messages <= 0:
            max_messages = defaults.max_messages
        scroll = values.get("scroll_direction")
        if scroll not in SCROLL_DIRECTIONS:
            scroll = defaults.scroll_direction

        return cls(
            max_messages=max_messages,
            scroll_direction=scroll,
            show_timestamp=_bool("show_timestamp", defaults.show_timestamp),
            show_author_name=_bool("show_author_name", defaults.show_author_name),
            show_author_photo=_bool("show_author_photo", defaults.show_author_photo),
        )

    @classmethod
    def from_profile(cls, profile: Optional[Mapping[str, Any]] = None) -> "Preferences":
        merged = _deep_merge(default_profile(), profile or {})
        return cls.from_mapping(merged["preferences"])

    @classmethod
    def from_host(
        cls,
        get_preference: Callable[[str], Any],
        defaults: Optional["Preferences"] = None,
    ) -> "Preferences":
        """Read the host's persisted preferences (camelCase keys)."""
        values = {field_name: get_preference(key) for field_name, key in PREFERENCE_KEYS.items()}
        return cls.from_mapping(values, defaults)

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, field_name) for field_name, key in PREFERENCE_KEYS.items()}
