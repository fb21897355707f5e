"""Host application bindings.

The host runtime (player plugin API, sidebar channel, preference storage) is
an external collaborator; this module only fixes the interface the
orchestrator needs from it and the payloads it sends through it.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from .chat.models import ChatMessage
from .logging_config import get_logger

log = get_logger("host")

# Outbound payload names
CHAT_LOADING = "chat-loading"
CHAT_DATA_CHUNK = "chat-data-chunk"
CHAT_DATA_COMPLETE = "chat-data-complete"
CHAT_PROGRESS = "chat-progress"
LIVE_CHAT_MESSAGES = "live-chat-messages"
POSITION_UPDATE = "position-update"
CHAT_INFO = "chat-info"
CHAT_ERROR = "chat-error"
PREFERENCES_UPDATE = "preferences-update"

# Inbound commands
READY = "ready"
RETRY_FETCH = "retry-fetch"


class HostBridge(Protocol):
    """Capabilities the orchestrator consumes from the host runtime."""

    def post_message(self, name: str, payload: Dict[str, Any]) -> None:
        ...

    def get_preference(self, key: str) -> Any:
        ...


class RecordingHost:
    """In-process host that records outbound payloads.

    Used by the command line and the tests; ``preferences`` plays the role of
    the host's persisted key/value store.
    """

    def __init__(self, preferences: Optional[Mapping[str, Any]] = None):
        self.preferences: Dict[str, Any] = dict(preferences or {})
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def post_message(self, name: str, payload: Dict[str, Any]) -> None:
        self.sent.append((name, payload))

    def get_preference(self, key: str) -> Any:
        return self.preferences.get(key)

    def names(self) -> List[str]:
        return [name for name, _ in self.sent]

    def payloads(self, name: str) -> List[Dict[str, Any]]:
        return [payload for n, payload in self.sent if n == name]

    def clear(self) -> None:
        self.sent.clear()


def chunk_payloads(messages: Sequence[ChatMessage], chunk_size: int = 100) -> List[Dict[str, Any]]:
    """Split a transcript into numbered ``chat-data-chunk`` payloads."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    total_chunks = (len(messages) + chunk_size - 1) // chunk_size
    payloads = []
    for index in range(total_chunks):
        start = index * chunk_size
        end = min(start + chunk_size, len(messages))
        payloads.append({
            "chunk": [m.to_dict() for m in messages[start:end]],
            "chunkIndex": index,
            "totalChunks": total_chunks,
            "start": start,
            "end": end,
        })
    return payloads


def reassemble_chunks(
    chunks: Iterable[Mapping[str, Any]],
    total_messages: int,
) -> Tuple[List[Dict[str, Any]], List[int]]:
    """Receiver side of chunked delivery.

    Returns the messages of all received chunks in chunk order, plus the
    indexes of chunks that never arrived.
    """
    by_index: Dict[int, List[Dict[str, Any]]] = {}
    expected = 0
    for payload in chunks:
        by_index[int(payload["chunkIndex"])] = list(payload.get("chunk") or [])
        expected = max(expected, int(payload.get("totalChunks") or 0))

    missing = [i for i in range(expected) if i not in by_index]
    messages: List[Dict[str, Any]] = []
    for i in range(expected):
        messages.extend(by_index.get(i, []))

    if missing:
        log.error(f"Missing chunks: {', '.join(str(i) for i in missing)}")
    elif len(messages) != total_messages:
        log.warning(f"Expected {total_messages} messages, got {len(messages)}")
    return messages, missing
