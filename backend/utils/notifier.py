"""Hand-off point to the notification collaborator.

The engine only decides that a notification is due and what it says; how it
reaches a parent or nurse is somebody else's job. send() is fire-and-forget.
"""

import logging
import threading
from typing import List, Protocol

from schemas.notification import NotificationRequest, NotificationKind

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, request: NotificationRequest) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes each request to the application log."""

    def send(self, request: NotificationRequest) -> None:
        logger.info(
            f"Notification {request.kind.value} for order {request.order_id}"
            f" schedule {request.schedule_id}: {request.payload}"
        )


class RecordingNotifier:
    """Keeps every request in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: List[NotificationRequest] = []

    def send(self, request: NotificationRequest) -> None:
        with self._lock:
            self.sent.append(request)

    def of_kind(self, kind: NotificationKind) -> List[NotificationRequest]:
        return [r for r in self.sent if r.kind == kind]


def dispatch(notifier: Notifier, request: NotificationRequest) -> bool:
    """Send without letting a delivery failure leak into engine state."""
    try:
        notifier.send(request)
        return True
    except Exception:
        logger.exception(f"Notification delivery failed for order {request.order_id}, schedule {request.schedule_id}")
        return False


def queue(db, request: NotificationRequest) -> None:
    """Hold a request on the session until its transaction commits."""
    db.info.setdefault("outbox", []).append(request)


def discard_outbox(db) -> None:
    db.info.pop("outbox", None)


def flush_outbox(db, notifier: Notifier) -> int:
    """Dispatch everything queued on the session; returns how many were sent."""
    pending = db.info.pop("outbox", [])
    return sum(1 for request in pending if dispatch(notifier, request))


default_notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    """FastAPI dependency; overridden in tests."""
    return default_notifier
