# === MODULE PURPOSE ===
# Common utilities shared across all modules.

from .clock import EngineClock
from .config import Config, load_config
from .errors import (
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    TradingError,
    ValidationError,
)
from .notifications import Notification, NotificationEmitter, NotificationType

__all__ = [
    "Config",
    "EngineClock",
    "InsufficientBalanceError",
    "InvalidStateError",
    "NotFoundError",
    "Notification",
    "NotificationEmitter",
    "NotificationType",
    "TradingError",
    "ValidationError",
    "load_config",
]
