from __future__ import annotations

import logging
from typing import Callable

from studio_sync.domain.ports import NotificationSink

logger = logging.getLogger(__name__)


class LoggingNotificationSink(NotificationSink):
    def notify(self, message: str) -> None:
        logger.info("Notification", extra={"extra": {"message": message}})


class CallbackNotificationSink(NotificationSink):
    """Forwards notifications to a host callback, e.g. a desktop toast."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self._callback = callback

    def notify(self, message: str) -> None:
        self._callback(message)
