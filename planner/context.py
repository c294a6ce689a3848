from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from planner.models import Moment, MonthCollection

logger = logging.getLogger(__name__)

NOTICE_INFO = "info"
NOTICE_ERROR = "error"
NOTICE_CONFLICT = "conflict"


@dataclass(frozen=True)
class Notice:
    text: str
    level: str = NOTICE_INFO


class Listeners:
    """Observer list; a failing listener is logged and never stops the others."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: List[Callable[..., Any]] = []

    def subscribe(self, callback: Callable[..., Any]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def emit(self, *args) -> None:
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception("%s listener failed", self.name)

    def __len__(self) -> int:
        return len(self._callbacks)


@dataclass
class PlannerContext:
    """State owned by one planner instance: the viewed month, the user and UI flags."""

    month_key: str
    month: MonthCollection = field(default_factory=dict)
    user_id: Optional[str] = None

    retro_lock: bool = True
    import_export_enabled: bool = False

    moments: List[Moment] = field(default_factory=list)
    # Transient per-task UI flags (editing, expanded subtasks); never persisted.
    ui_state: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    dataset_changed: Listeners = field(default_factory=lambda: Listeners("dataset_changed"))
    streak_changed: Listeners = field(default_factory=lambda: Listeners("streak_changed"))
    reminder_fired: Listeners = field(default_factory=lambda: Listeners("reminder_fired"))
    notice: Listeners = field(default_factory=lambda: Listeners("notice"))

    @property
    def signed_in(self) -> bool:
        return bool(self.user_id)

    def notify(self, text: str, level: str = NOTICE_INFO) -> None:
        self.notice.emit(Notice(text=text, level=level))

    def ui_flag(self, task_id: str, name: str, default=None):
        return self.ui_state.get(task_id, {}).get(name, default)

    def set_ui_flag(self, task_id: str, name: str, value) -> None:
        self.ui_state.setdefault(task_id, {})[name] = value

    def drop_ui_state(self, task_id: str) -> None:
        self.ui_state.pop(task_id, None)
