"""
CostKitchen - User Notifications

Keeps recent notices and fans them out to listeners (a UI toast layer,
the HTTP API). Every notice is logged as well.
"""

import logging
from collections import deque
from typing import Callable

from costkitchen.models.finance import Notice, NoticeLevel

logger = logging.getLogger(__name__)

NoticeListener = Callable[[Notice], None]

LOG_LEVELS = {
    NoticeLevel.INFO: logging.INFO,
    NoticeLevel.WARNING: logging.WARNING,
    NoticeLevel.ERROR: logging.ERROR,
}


class Notifier:

    def __init__(self, history: int = 50) -> None:
        self._notices: deque[Notice] = deque(maxlen=history)
        self._listeners: list[NoticeListener] = []

    def notify(self, message: str, level: NoticeLevel = NoticeLevel.INFO) -> Notice:
        notice = Notice(level=level, message=message)
        self._notices.append(notice)
        logger.log(LOG_LEVELS[level], f"[NOTICE] {message}")

        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception("Notice listener failed")
        return notice

    def info(self, message: str) -> Notice:
        return self.notify(message, NoticeLevel.INFO)

    def warning(self, message: str) -> Notice:
        return self.notify(message, NoticeLevel.WARNING)

    def error(self, message: str) -> Notice:
        return self.notify(message, NoticeLevel.ERROR)

    def recent(self) -> list[Notice]:
        """Notices, oldest first."""
        return list(self._notices)

    def clear(self) -> None:
        self._notices.clear()

    def subscribe(self, listener: NoticeListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: NoticeListener) -> None:
        self._listeners = [l for l in self._listeners if l != listener]
