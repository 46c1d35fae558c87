"""
Device capability ports.

Haptic feedback and local notifications belong to the device runtime, not to
the cache. The Progress Service receives them as injected ports so it can run
(and be tested) without a device. The default implementations only log.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class HapticPort(ABC):
    """Tactile feedback after user actions."""

    @abstractmethod
    async def success(self) -> None:
        ...

    @abstractmethod
    async def error_action(self) -> None:
        ...


class NotificationPort(ABC):
    """Local notifications shown to the reader."""

    @abstractmethod
    async def notify(self, title: str, body: str, data: Optional[dict] = None) -> None:
        ...


class LoggingHapticPort(HapticPort):
    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    async def success(self) -> None:
        if self.enabled:
            logger.debug("haptic: success")

    async def error_action(self) -> None:
        if self.enabled:
            logger.debug("haptic: error")


class LoggingNotificationPort(NotificationPort):
    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    async def notify(self, title: str, body: str, data: Optional[dict] = None) -> None:
        if self.enabled:
            logger.info("notification: %s: %s", title, body)


STREAK_TITLE = "Streak Achievement!"


def streak_message(streak: int) -> str:
    """Body text of the streak milestone notification."""
    return f"Amazing! You've maintained a {streak}-day streak. Your dedication is inspiring!"
