"""Error taxonomy and explicit failure values.

Internal helpers raise ``ChatFetchError`` subclasses; every operation boundary
(bootstrap, archived fetch, single live poll, probe) catches them and returns
a ``Failure`` so callers can pick a step-specific recovery.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    CONFIGURATION = "configuration"
    NO_CHAT = "no_chat"
    NOT_LIVE = "not_live"
    PROBE = "probe"
    UNEXPECTED = "unexpected"


class ChatFetchError(Exception):
    """Base class for chat acquisition failures."""

    kind = ErrorKind.UNEXPECTED


class TransportError(ChatFetchError):
    """Non-2xx status, network failure or external process failure."""

    kind = ErrorKind.TRANSPORT


class ConfigurationError(ChatFetchError):
    """Missing or unparseable page configuration / data blobs."""

    kind = ErrorKind.CONFIGURATION


class NoChatReplayError(ChatFetchError):
    """The video exposes no chat continuation."""

    kind = ErrorKind.NO_CHAT


class NotLiveError(ChatFetchError):
    """The availability probe reports the stream is not live."""

    kind = ErrorKind.NOT_LIVE


class ProbeError(ChatFetchError):
    """The external metadata probe failed or produced unparseable output."""

    kind = ErrorKind.PROBE


@dataclass(frozen=True)
class Failure:
    """Typed failure result returned by operation boundaries."""

    error: str
    kind: ErrorKind = ErrorKind.UNEXPECTED

    success = False

    @property
    def is_not_live(self) -> bool:
        return self.kind is ErrorKind.NOT_LIVE

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Failure":
        if isinstance(exc, ChatFetchError):
            return cls(error=str(exc), kind=exc.kind)
        return cls(error=f"{type(exc).__name__}: {exc}", kind=ErrorKind.UNEXPECTED)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, "kind": self.kind.value}
