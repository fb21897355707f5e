"""Centralized logging configuration for ytchatsync.

Usage:
    from ytchatsync.logging_config import setup_logging
    setup_logging()  # Call once at startup

    # Then in any module:
    import logging
    log = logging.getLogger("ytchatsync.mymodule")
"""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, Optional


_CONFIGURED = False


def _parse_module_levels(spec: str) -> Dict[str, int]:
    """Parse per-module logger levels from an env-var style string.

    Format:
        YTCS_LOG_MODULE_LEVELS="ytchatsync.chat=DEBUG,innertube=INFO"

    Notes:
      - Names not starting with "ytchatsync" are auto-prefixed.
      - Separators: comma/semicolon. Assignment: "=" or ":".
      - Invalid entries are ignored.
    """
    out: Dict[str, int] = {}
    if not spec:
        return out
    for part in re.split(r"[;,]+", spec):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            name, level_str = part.split("=", 1)
        elif ":" in part:
            name, level_str = part.split(":", 1)
        else:
            continue
        name = name.strip()
        level_str = level_str.strip().upper()
        if not name or not level_str:
            continue
        if not name.startswith("ytchatsync"):
            name = f"ytchatsync.{name}"
        level = getattr(logging, level_str, None)
        if isinstance(level, int):
            out[name] = level
    return out


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None,
) -> None:
    """Configure logging for the ytchatsync package.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional file path to write logs to
        format_string: Custom format string (default uses a standard format)
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logger = logging.getLogger("ytchatsync")
    logger.setLevel(level)
    logger.handlers.clear()

    # Handlers stay permissive so per-module overrides can enable DEBUG.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    logger.propagate = False

    module_levels = _parse_module_levels(os.getenv("YTCS_LOG_MODULE_LEVELS", ""))
    for name, lvl in module_levels.items():
        logging.getLogger(name).setLevel(lvl)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    If name doesn't start with 'ytchatsync', it will be prefixed.
    """
    if not name.startswith("ytchatsync"):
        name = f"ytchatsync.{name}"
    return logging.getLogger(name)


class RateLimitedLogger:
    """Logs the first occurrence and then only every Nth one.

    Used for per-item decode failures so that systematically malformed input
    does not flood the log.
    """

    def __init__(self, logger: logging.Logger, every: int = 50, level: int = logging.WARNING):
        self.logger = logger
        self.every = max(1, int(every))
        self.level = level
        self.count = 0

    def log(self, msg: str, *args: object) -> None:
        self.count += 1
        if self.count == 1 or self.count % self.every == 0:
            self.logger.log(self.level, f"{msg} (failure #{self.count})", *args)
