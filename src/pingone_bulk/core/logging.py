"""Logging setup for the service and the command line."""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int | str = logging.INFO, log_file: Optional[str | Path] = None) -> None:
    """Configure console logging and, optionally, a log file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def read_log_tail(path: str | Path, lines: int = 200) -> List[str]:
    """Return the last ``lines`` lines of a log file (empty if it does not exist)."""
    log_path = Path(path)
    if not log_path.exists():
        return []
    with log_path.open("r", encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=max(lines, 0))]


def redact(value: Optional[str], keep: int = 4) -> str:
    if not value:
        return "undefined"
    return f"{value[:keep]}..."
