"""
Day-completion streak.

A day counts once every task (and every subtask) of that day is completed.
The tracker only ever looks at "today" by the injected clock:

- completing today when the last counted day was yesterday (or nothing is
  counted) increments; completing today after a gap restarts at 1;
- completing again while today is already counted is a no-op;
- un-completing today after it was counted reverts exactly that increment;
- a last counted day older than yesterday resets the streak on load and on
  the missed-day check.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from planner.context import Listeners
from planner.models import StreakState, Task, all_completed
from planner.ports import Clock
from planner.timemath import today_key, yesterday_key

logger = logging.getLogger(__name__)


class StreakEvent(str, Enum):
    INCREASED = "increased"
    STARTED = "started"
    REVERTED = "reverted"
    RESET = "reset"


STREAK_MESSAGES = {
    StreakEvent.INCREASED: "🔥 Streak increased!",
    StreakEvent.STARTED: "🔥 Streak started!",
    StreakEvent.REVERTED: "Streak reverted",
    StreakEvent.RESET: "Streak reset!",
}


class StreakTracker:
    def __init__(
        self,
        clock: Clock,
        *,
        persist: Callable[[StreakState], None] | None = None,
        listeners: Listeners | None = None,
    ) -> None:
        self._clock = clock
        self._persist = persist
        self.listeners = listeners if listeners is not None else Listeners("streak_changed")
        self.state = StreakState()

    @property
    def streak(self) -> int:
        return self.state.streak

    @property
    def last_streak_date(self) -> str | None:
        return self.state.last_streak_date

    def load(self, state: StreakState | None) -> StreakEvent | None:
        """Adopt a persisted state, resetting it when a day was missed."""
        self.state = state or StreakState()
        event = self.check_missed_day()
        if event is None:
            self.listeners.emit(self.state, None)
        return event

    def check_missed_day(self) -> StreakEvent | None:
        now = self._clock.now()
        last = self.state.last_streak_date
        if last and last != today_key(now) and last != yesterday_key(now):
            logger.info("Streak reset: last counted day %s", last)
            return self._transition(StreakState(), StreakEvent.RESET)
        return None

    def record_today(self, tasks: list[Task]) -> StreakEvent | None:
        """Re-evaluate today after its task list changed."""
        now = self._clock.now()
        today = today_key(now)
        last = self.state.last_streak_date

        if all_completed(tasks):
            if last == today:
                return None
            if last is None or last == yesterday_key(now):
                new_state = StreakState(streak=self.state.streak + 1, last_streak_date=today)
                return self._transition(new_state, StreakEvent.INCREASED)
            return self._transition(StreakState(streak=1, last_streak_date=today), StreakEvent.STARTED)

        if last == today:
            new_state = StreakState(streak=max(0, self.state.streak - 1), last_streak_date=None)
            return self._transition(new_state, StreakEvent.REVERTED)
        return None

    def reset(self) -> None:
        self.state = StreakState()
        self.listeners.emit(self.state, None)

    def _transition(self, new_state: StreakState, event: StreakEvent) -> StreakEvent:
        self.state = new_state
        if self._persist is not None:
            try:
                self._persist(new_state)
            except Exception:
                logger.exception("Persisting streak state failed")
        logger.debug("Streak %s -> %s (%s)", event.value, new_state.streak, new_state.last_streak_date)
        self.listeners.emit(new_state, event)
        return event
