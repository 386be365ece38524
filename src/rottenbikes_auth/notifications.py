"""
Notification sink for transient user-facing messages.

The engine reports outcomes here and never blocks on display.
"""

import logging
from enum import Enum
from typing import Callable, Protocol

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


class NotificationKey(str, Enum):
    LOGIN_SUCCESS = "login_success"
    CROSS_DEVICE_CONFIRMED = "cross_device_confirmed"
    SESSION_EXPIRED = "session_expired"
    LOGGED_OUT = "logged_out"


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    key: NotificationKey
    message: str


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


_LEVELS = {
    NotificationKind.SUCCESS: logging.INFO,
    NotificationKind.INFO: logging.INFO,
    NotificationKind.ERROR: logging.WARNING,
}


class LoggingNotifier:
    """Default sink: writes notifications to the log."""

    def notify(self, notification: Notification) -> None:
        logger.log(_LEVELS[notification.kind], "[%s] %s", notification.key.value, notification.message)


class CallbackNotifier:
    """Forward notifications to a plain callable (toast, console, ...)."""

    def __init__(self, callback: Callable[[Notification], None]):
        self._callback = callback

    def notify(self, notification: Notification) -> None:
        self._callback(notification)
