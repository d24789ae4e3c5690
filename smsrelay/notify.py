"""User-visible delivery notifications."""
from __future__ import annotations

import logging
from typing import Protocol


class NotificationSink(Protocol):
    """Fire-and-forget signal about a delivery outcome."""

    def notify(self, success: bool, title: str, body: str) -> None:
        ...


class LoggingNotificationSink:
    """Default sink that reports outcomes through :mod:`logging`."""

    def __init__(self, name: str = "smsrelay.notifications") -> None:
        self._logger = logging.getLogger(name)

    def notify(self, success: bool, title: str, body: str) -> None:
        level = logging.INFO if success else logging.WARNING
        self._logger.log(level, "%s: %s", title, body)


__all__ = ["LoggingNotificationSink", "NotificationSink"]
