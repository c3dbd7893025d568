"""
Operator notifications.

Restarts, bad bundles and failed cell initializations are recorded here so
they can be read back from the status server after the log has scrolled.
"""
import threading
import uuid
from datetime import datetime, timezone

_MAX = 50
_lock = threading.Lock()


def add_notification(level: str, title: str, message: str) -> dict:
    """
    Record a notification and return it.

    level: "info" | "warn" | "error"
    """
    from alwayson import state
    n = {
        "id": uuid.uuid4().hex[:12],
        "level": level,
        "title": title,
        "message": message,
        "ts": datetime.now(timezone.utc).isoformat(),
    }
    with _lock:
        state.notifications.insert(0, n)
        del state.notifications[_MAX:]
    return n


def list_notifications(level: str = "") -> list[dict]:
    from alwayson import state
    with _lock:
        return [n for n in state.notifications if not level or n["level"] == level]
