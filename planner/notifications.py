from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class ShownNotification:
    title: str
    body: str
    dedupe_key: str
    shown_at: datetime
    count: int = 1


class LoggingNotificationSink:
    """
    NotificationSink that logs each notification and keeps the latest one per key.

    Showing the same dedupe key again replaces the previous entry instead of
    adding a second one.
    """

    def __init__(self) -> None:
        self._active: dict[str, ShownNotification] = {}

    def show(self, title: str, body: str, dedupe_key: str) -> ShownNotification:
        previous = self._active.get(dedupe_key)
        shown = ShownNotification(
            title=title,
            body=body,
            dedupe_key=dedupe_key,
            shown_at=datetime.now(),
            count=(previous.count + 1) if previous else 1,
        )
        self._active[dedupe_key] = shown
        logger.info("%s: %s", title, body)
        return shown

    def close(self, dedupe_key: str) -> None:
        self._active.pop(dedupe_key, None)

    @property
    def active(self) -> list[ShownNotification]:
        return list(self._active.values())
