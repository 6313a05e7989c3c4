"""Server-side logging service with persistence to a JSON-lines file."""

import json
from datetime import datetime, timezone
from pathlib import Path
from collections import deque
from typing import Optional
import threading

from gateway.config import settings


# Thread-safe log storage
_log_lock = threading.Lock()
_log_buffer: deque = deque(maxlen=2000)  # Keep last 2000 entries in memory
_log_file: Optional[Path] = None
_log_sequence: int = 0  # Global sequence number for ordering


def _get_log_file() -> Path:
    """Get the log file path, creating directory if needed."""
    global _log_file
    if _log_file is None:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        _log_file = log_dir / "gateway.jsonl"
    return _log_file


def log(level: str, message: str, category: str = "general", details: Optional[dict] = None):
    """
    Log a message with optional details.

    Args:
        level: Log level (INFO, WARN, ERROR, DEBUG, SUCCESS)
        message: Log message
        category: Category (general, session, resolve, search, stream, cache, ytdlp)
        details: Optional additional details dict
    """
    global _log_sequence

    with _log_lock:
        _log_sequence += 1
        seq = _log_sequence

    entry = {
        "seq": seq,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "level": level,
        "category": category,
        "message": message,
    }
    if details:
        entry["details"] = details

    with _log_lock:
        _log_buffer.append(entry)

        try:
            log_file = _get_log_file()
            with open(log_file, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError:
            # A read-only log directory must not break request handling
            pass

    # Also print to stdout for the process supervisor
    print(f"[{entry['timestamp']}] [{level}] [{category}] {message}", flush=True)


def get_logs(limit: int = 100, category: Optional[str] = None, level: Optional[str] = None, since_seq: int = 0) -> list:
    """
    Get recent logs from memory buffer.

    Args:
        limit: Maximum number of logs to return
        category: Filter by category
        level: Filter by level
        since_seq: Only return logs with sequence > since_seq
    """
    with _log_lock:
        logs = list(_log_buffer)

    if since_seq > 0:
        logs = [l for l in logs if l.get("seq", 0) > since_seq]

    if category:
        logs = [l for l in logs if l.get("category") == category]
    if level:
        logs = [l for l in logs if l.get("level") == level]

    return logs[-limit:]


def get_latest_sequence() -> int:
    """Get the current log sequence number."""
    return _log_sequence


# Convenience functions
def info(message: str, category: str = "general", details: Optional[dict] = None):
    log("INFO", message, category, details)

def warn(message: str, category: str = "general", details: Optional[dict] = None):
    log("WARN", message, category, details)

def error(message: str, category: str = "general", details: Optional[dict] = None):
    log("ERROR", message, category, details)

def debug(message: str, category: str = "general", details: Optional[dict] = None):
    log("DEBUG", message, category, details)

def success(message: str, category: str = "general", details: Optional[dict] = None):
    log("SUCCESS", message, category, details)


# YT-DLP specific logging
class YtdlpLogger:
    """Logger adapter handed to yt-dlp so its output lands in our log stream."""

    def __init__(self, context: str):
        self.context = context

    def debug(self, msg):
        if msg.startswith('[debug]'):
            log("DEBUG", msg, "ytdlp", {"context": self.context})
        else:
            # yt-dlp uses debug for informational messages too
            log("INFO", msg, "ytdlp", {"context": self.context})

    def info(self, msg):
        log("INFO", msg, "ytdlp", {"context": self.context})

    def warning(self, msg):
        log("WARN", msg, "ytdlp", {"context": self.context})

    def error(self, msg):
        log("ERROR", msg, "ytdlp", {"context": self.context})
