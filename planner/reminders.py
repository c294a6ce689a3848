"""
Reminder scheduler for today's timed tasks.

Each task with a ``reminderTime`` gets at most one timer, firing
``lead_minutes`` before that time. A recompute from a task snapshot cancels
every armed timer and re-arms from scratch, so it can be repeated safely.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from planner.constants import (
    REMINDER_DEBOUNCE_MS,
    REMINDER_LEAD_MINUTES,
    REMINDER_MAX_AHEAD_HOURS,
    REMINDER_TITLE,
)
from planner.context import Listeners
from planner.deferred import DeferredCall
from planner.models import Task, as_day_record
from planner.ports import Clock, NotificationSink
from planner.timemath import at_time_on, is_valid_reminder_time, today_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ArmedReminder:
    task: Task
    date_key: str
    fire_at: datetime
    delay: float
    handle: asyncio.TimerHandle


def is_valid_task(task: Any) -> bool:
    return (
        isinstance(task, Task)
        and isinstance(task.id, str)
        and bool(task.id)
        and isinstance(task.text, str)
        and bool(task.text.strip())
        and is_valid_reminder_time(task.reminder_time)
        and not task.completed
    )


def effective_date(task: Task, date_key: str | None) -> str | None:
    return task.due or date_key


class ReminderScheduler:
    def __init__(
        self,
        clock: Clock,
        sink: NotificationSink,
        *,
        lead_minutes: int = REMINDER_LEAD_MINUTES,
        max_ahead_hours: int = REMINDER_MAX_AHEAD_HOURS,
        debounce_ms: int = REMINDER_DEBOUNCE_MS,
        listeners: Listeners | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._clock = clock
        self._sink = sink
        self._lead = timedelta(minutes=lead_minutes)
        self._max_ahead = timedelta(hours=max_ahead_hours)
        self._loop = loop
        self.listeners = listeners if listeners is not None else Listeners("reminder_fired")

        self._armed: dict[str, ArmedReminder] = {}
        self._last_snapshot: Mapping[str, Any] | None = None
        self._debounce = DeferredCall(debounce_ms / 1000.0, self._perform_update, name="reminders", loop=loop)

    # ---- queries ----

    @property
    def scheduled_count(self) -> int:
        return len(self._armed)

    def scheduled_task_ids(self) -> list[str]:
        return list(self._armed)

    def armed(self, task_id: str) -> ArmedReminder | None:
        return self._armed.get(task_id)

    @property
    def update_pending(self) -> bool:
        return self._debounce.pending

    def debug_info(self) -> dict:
        return {
            "scheduled_count": len(self._armed),
            "scheduled_task_ids": list(self._armed),
            "update_pending": self._debounce.pending,
            "last_snapshot": "present" if self._last_snapshot is not None else None,
            "today": today_key(self._clock.now()),
        }

    def notification_time(self, date_key: str, reminder_time: str, now: datetime) -> datetime:
        return at_time_on(date_key, reminder_time, now) - self._lead

    # ---- arming ----

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule_reminder(self, task: Task, date_key: str | None = None) -> bool:
        """Arm a reminder for ``task``; returns True only when a timer was armed."""
        if not is_valid_task(task):
            logger.debug("Cannot schedule reminder: invalid task %r", task)
            return False
        day = effective_date(task, date_key)
        if not day:
            logger.warning("Cannot schedule reminder: missing date for task %s", task.id)
            return False

        self.cancel_reminder(task.id)

        now = self._clock.now()
        if day != today_key(now):
            return False
        try:
            fire_at = self.notification_time(day, task.reminder_time, now)
        except ValueError:
            logger.debug("Bad reminder time %r for task %s", task.reminder_time, task.id)
            return False

        delay = (fire_at - now).total_seconds()
        if delay <= 0:
            logger.debug("Notification time is in the past, skipping: %s", task.text)
            return False
        if delay > self._max_ahead.total_seconds():
            logger.debug("Notification time is too far in the future, skipping: %s", task.text)
            return False

        handle = self._get_loop().call_later(delay, self._fire, task.id)
        self._armed[task.id] = ArmedReminder(task=task, date_key=day, fire_at=fire_at, delay=delay, handle=handle)
        logger.debug("Reminder armed task=%s delay=%.1fs", task.id, delay)
        return True

    def cancel_reminder(self, task_id: str) -> bool:
        entry = self._armed.pop(task_id, None)
        if entry is None:
            return False
        entry.handle.cancel()
        logger.debug("Cancelled reminder for task %s", task_id)
        return True

    def cancel_all_reminders(self) -> int:
        count = len(self._armed)
        for entry in self._armed.values():
            entry.handle.cancel()
        self._armed.clear()
        if count:
            logger.debug("Cancelled %s scheduled reminders", count)
        return count

    # ---- recompute ----

    def update_reminders(self, tasks_by_date: Mapping[str, Any]) -> None:
        """Debounced recompute from a ``{dateKey: DayRecord}`` snapshot."""
        self._debounce.schedule(tasks_by_date)

    def force_update(self) -> bool:
        return self._debounce.flush()

    def refresh_today_reminders(self) -> None:
        """Re-evaluate the last snapshot, e.g. after the date rolled over."""
        if self._last_snapshot is None:
            logger.debug("No task snapshot available for refresh")
            return
        self._rebuild(self._last_snapshot)

    def cleanup(self) -> None:
        self.cancel_all_reminders()
        self._debounce.cancel()
        self._last_snapshot = None

    def _perform_update(self, tasks_by_date: Mapping[str, Any]) -> None:
        if tasks_by_date is self._last_snapshot:
            return
        self._last_snapshot = tasks_by_date
        self._rebuild(tasks_by_date)

    def _rebuild(self, tasks_by_date: Mapping[str, Any]) -> None:
        self.cancel_all_reminders()
        if not isinstance(tasks_by_date, Mapping):
            return

        today = today_key(self._clock.now())
        armed = invalid = skipped = 0
        for date_key, raw_day in tasks_by_date.items():
            record = as_day_record(raw_day)
            if record is None:
                continue
            for task in record.tasks:
                if effective_date(task, date_key) != today:
                    if task.reminder_time:
                        skipped += 1
                    continue
                if not is_valid_task(task):
                    if task.reminder_time and not task.completed:
                        invalid += 1
                    continue
                if self.schedule_reminder(task, date_key):
                    armed += 1

        if armed or invalid or skipped:
            logger.info("Reminders: %s scheduled, %s invalid, %s skipped", armed, invalid, skipped)

    # ---- firing ----

    def _lookup(self, task_id: str) -> tuple[Task, str] | None:
        if self._last_snapshot is None:
            return None
        for date_key, raw_day in self._last_snapshot.items():
            record = as_day_record(raw_day)
            if record is None:
                continue
            for task in record.tasks:
                if task.id == task_id:
                    return task, date_key
        return None

    def fire_now(self, task_id: str) -> bool:
        """Fire an armed reminder immediately; False when nothing is armed for the id."""
        entry = self._armed.get(task_id)
        if entry is None:
            return False
        entry.handle.cancel()
        self._fire(task_id)
        return True

    def _fire(self, task_id: str) -> None:
        entry = self._armed.pop(task_id, None)
        if entry is None:
            return
        try:
            task, day = entry.task, entry.date_key
            if self._last_snapshot is not None:
                found = self._lookup(task_id)
                if found is None:
                    logger.debug("Task %s disappeared before its reminder, skipping", task_id)
                    return
                task, found_day = found
                day = effective_date(task, found_day)
            if not is_valid_task(task) or day != today_key(self._clock.now()):
                logger.debug("Task %s became invalid before its reminder, skipping", task_id)
                return

            minutes = int(self._lead.total_seconds() // 60)
            self._sink.show(REMINDER_TITLE, f"{task.text} is in {minutes} minutes", f"reminder-{task.id}")
            logger.info("Reminder sent: %s", task.text)
            self.listeners.emit(task.id)
        except Exception:
            logger.exception("Error showing reminder notification for task %s", task_id)
