"""
Bounded in-memory copy of recent log records, served by /logs.
"""
import logging
import threading
from collections import deque

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"

_lock = threading.Lock()
_buffer: deque = deque(maxlen=1000)
_handler: "LogBufferHandler | None" = None


class LogBufferHandler(logging.Handler):
    """Appends formatted records to the module buffer as dicts."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "ts": record.created,
                "name": record.name,
                "level": record.levelname,
                "levelno": record.levelno,
                "message": self.format(record),
            }
            with _lock:
                _buffer.append(entry)
        except Exception:
            self.handleError(record)


def install_log_handler(capacity: int = 1000) -> LogBufferHandler:
    """Attach the buffer handler to the root logger if it is not attached already."""
    global _buffer, _handler
    root = logging.getLogger()
    with _lock:
        if _handler is None:
            _buffer = deque(_buffer, maxlen=capacity)
            _handler = LogBufferHandler()
            _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        if _handler not in root.handlers:
            root.addHandler(_handler)
        return _handler


def get_recent_logs(limit: int = 200, min_level: int = logging.NOTSET) -> list[dict]:
    """Return up to `limit` newest entries at or above min_level, oldest first."""
    with _lock:
        entries = [e for e in _buffer if e["levelno"] >= min_level]
    return entries[-limit:] if limit > 0 else []
