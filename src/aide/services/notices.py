"""User-visible notices (the terminal equivalent of toasts)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Literal

logger = logging.getLogger(__name__)

NoticeLevel = Literal["info", "error"]


@dataclass
class Notice:
    """A message surfaced to the user."""

    title: str
    description: str = ""
    level: NoticeLevel = "info"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NoticeBoard:
    """Collects notices and forwards them to an optional display callback."""

    def __init__(self, on_notice: Callable[[Notice], None] | None = None, max_history: int = 100):
        self._on_notice = on_notice
        self._max_history = max_history
        self.history: list[Notice] = []

    def post(self, title: str, description: str = "", level: NoticeLevel = "info") -> Notice:
        notice = Notice(title=title, description=description, level=level)
        self.history.append(notice)
        if len(self.history) > self._max_history:
            del self.history[: len(self.history) - self._max_history]
        if self._on_notice is not None:
            try:
                self._on_notice(notice)
            except Exception:
                logger.warning("Notice display callback failed", exc_info=True)
        return notice

    def info(self, title: str, description: str = "") -> Notice:
        return self.post(title, description, "info")

    def error(self, title: str, description: str = "") -> Notice:
        return self.post(title, description, "error")

    @property
    def last(self) -> Notice | None:
        return self.history[-1] if self.history else None
