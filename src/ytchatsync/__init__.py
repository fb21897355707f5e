"""YouTube chat acquisition and normalization.

Fetches archived (replay) and live chat from YouTube's internal web API and
normalizes it into a stable message schema for playback-synchronized display.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
