"""Append-only log file shared by every component (one `[date] message` line per event)."""

from __future__ import annotations

from datetime import date
from pathlib import Path

_LOG_FILE: Path | None = None


def set_log_file(path: Path | str | None) -> None:
    global _LOG_FILE
    _LOG_FILE = Path(path) if path is not None else None


def log(msg: str) -> None:
    if _LOG_FILE is None:
        return
    try:
        _LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(_LOG_FILE, "a", encoding="utf-8") as f:
            f.write(f"[{date.today().isoformat()}] {msg}\n")
    except OSError:
        pass
