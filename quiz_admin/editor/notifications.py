from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable, List, Optional


LOGGER = logging.getLogger(__name__)


class Level(str, Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    level: Level = Level.INFO


class Notifier:
    """Dismissible toasts shown by the editor.

    Every notification is kept until dismissed and is also written to the
    log, so a failure that reaches the user is never only in memory.
    """

    def __init__(self, listener: Optional[Callable[[Notification], None]] = None):
        self._listener = listener
        self._active: List[Notification] = []
        self.history: List[Notification] = []

    @property
    def active(self) -> List[Notification]:
        return list(self._active)

    def _push(self, notification: Notification) -> Notification:
        if notification.level is Level.ERROR:
            LOGGER.warning("%s: %s", notification.title, notification.message)
        else:
            LOGGER.info("%s: %s", notification.title, notification.message)
        self._active.append(notification)
        self.history.append(notification)
        if self._listener is not None:
            self._listener(notification)
        return notification

    def info(self, title: str, message: str) -> Notification:
        return self._push(Notification(title, message, Level.INFO))

    def error(self, title: str, message: str) -> Notification:
        return self._push(Notification(title, message, Level.ERROR))

    def report(self, exc: BaseException) -> Notification:
        title = getattr(exc, "title", "Error")
        return self.error(title, str(exc) or exc.__class__.__name__)

    def dismiss(self, notification: Notification) -> None:
        if notification in self._active:
            self._active.remove(notification)

    @property
    def errors(self) -> List[Notification]:
        return [item for item in self.history if item.level is Level.ERROR]


__all__ = ["Level", "Notification", "Notifier"]
