"""YouTube innertube access: page extraction, HTTP transport, probe and session bootstrap."""

from .client import InnertubeClient, watch_url
from .extract import raw_decode, search_json
from .probe import AvailabilityProbe, ProbeResult
from .session import Session, SessionBootstrapper

__all__ = [
    "InnertubeClient",
    "watch_url",
    "raw_decode",
    "search_json",
    "AvailabilityProbe",
    "ProbeResult",
    "Session",
    "SessionBootstrapper",
]
