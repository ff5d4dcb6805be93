# === MODULE PURPOSE ===
# Notification emitter for user-facing trading events.
# Translates engine state transitions into a capped, newest-first feed.

# === KEY CONCEPTS ===
# - Notification: success / error / info / warning event with read flag
# - Ring buffer: only the most recent N notifications are retained
# - Subscribers: callbacks invoked synchronously on every emission

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from src.common.clock import EngineClock

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_LIMIT = 50


class NotificationType(str, Enum):
    """Severity of a notification."""

    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


@dataclass
class Notification:
    """A single user-facing event."""

    id: str
    type: NotificationType
    title: str
    message: str
    timestamp: int
    read: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp,
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            type=NotificationType(data["type"]),
            title=data.get("title", ""),
            message=data.get("message", ""),
            timestamp=int(data.get("timestamp", 0)),
            read=bool(data.get("read", False)),
        )


NotificationCallback = Callable[[Notification], None]


class NotificationEmitter:
    """
    Capped feed of notifications, newest first.

    Usage:
        emitter = NotificationEmitter(limit=50)
        emitter.subscribe(lambda n: print(n.title))

        n = emitter.emit("success", "Order Executed", "Bought 10 TECH @ 100.00")
        emitter.mark_read(n.id)
        emitter.clear_all()
    """

    def __init__(
        self,
        limit: int = DEFAULT_NOTIFICATION_LIMIT,
        clock: EngineClock | None = None,
    ):
        if limit <= 0:
            raise ValueError(f"Notification limit must be positive, got {limit}")
        self._limit = limit
        self._clock = clock or EngineClock()
        self._items: list[Notification] = []
        self._callbacks: list[NotificationCallback] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def items(self) -> list[Notification]:
        """Notifications, newest first."""
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def subscribe(self, callback: NotificationCallback) -> None:
        """Register a callback invoked for every new notification."""
        self._callbacks.append(callback)

    def unsubscribe(self, callback: NotificationCallback) -> None:
        """Remove a previously registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def emit(
        self,
        notification_type: NotificationType | str,
        title: str,
        message: str,
    ) -> Notification:
        """
        Emit a notification.

        Args:
            notification_type: success / error / info / warning.
            title: Short headline.
            message: Human-readable detail.

        Returns:
            The stored notification.
        """
        notification = Notification(
            id=str(uuid.uuid4()),
            type=NotificationType(notification_type),
            title=title,
            message=message,
            timestamp=self._clock.now_ms(),
        )

        self._items.insert(0, notification)
        del self._items[self._limit :]

        for callback in self._callbacks:
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification callback failed: {e}")

        return notification

    def mark_read(self, notification_id: str) -> bool:
        """
        Mark a notification as read.

        Returns:
            True if the notification exists.
        """
        for notification in self._items:
            if notification.id == notification_id:
                notification.read = True
                return True
        return False

    def clear_all(self) -> None:
        """Drop every notification."""
        self._items = []

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize the feed, newest first."""
        return [n.to_dict() for n in self._items]

    def load(self, data: list[dict[str, Any]]) -> None:
        """Replace the feed with persisted notifications."""
        self._items = [Notification.from_dict(d) for d in data][: self._limit]
