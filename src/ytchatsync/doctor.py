from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .utils import subprocess_flags


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    checks: Dict[str, Dict[str, object]]


def _which(cmd: str) -> Optional[str]:
    if Path(cmd).is_file():
        return str(Path(cmd).resolve())
    return shutil.which(cmd)


def _version(cmd: str) -> str:
    try:
        out = subprocess.check_output([cmd, "--version"], text=True, stderr=subprocess.STDOUT, **subprocess_flags())
        return out.splitlines()[0].strip() if out else ""
    except (OSError, subprocess.CalledProcessError) as e:
        return f"error: {type(e).__name__}: {e}"


def run_doctor(ytdlp_path: str = "yt-dlp") -> DoctorReport:
    checks: Dict[str, Dict[str, object]] = {}

    path = _which(ytdlp_path)
    checks["yt-dlp"] = {
        "found": path is not None,
        "path": path,
        "version": _version(path) if path else None,
    }
    if path is None:
        checks["yt-dlp"]["note"] = "Install with: pip install yt-dlp (or set YTCS_YTDLP)"

    ok = bool(checks["yt-dlp"]["found"])
    return DoctorReport(ok=ok, checks=checks)
