"""
Sync orchestrator.

Owns the viewed month and runs every mutation through the same pipeline:
local write (synchronous) -> remote write (background, never awaited by the
caller) -> streak re-evaluation for today -> reminder recompute -> listeners.

Remote reads happen only at sync points: sign-in (full merge), month
navigation (remote replaces local when it differs) and explicit refresh
(re-read without merge). Remote failures are logged and surfaced as notices;
they never propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from planner.constants import (
    IMPORT_EXPORT_META,
    LOCAL_STREAK_KEY,
    MONTH_KEY_PREFIX,
    RETRO_LOCK_META,
    STREAK_META,
)
from planner.context import NOTICE_ERROR, PlannerContext
from planner.deferred import DeferredCall
from planner.errors import ValidationError
from planner.merge import merge_dataset
from planner.models import (
    Dataset,
    DayRecord,
    MonthCollection,
    StreakState,
    Subtask,
    Task,
    all_completed,
    dump_dataset,
    dump_month,
    load_dataset,
    load_month,
)
from planner.ports import Clock, LocalStore, RemoteStore
from planner.reminders import ReminderScheduler
from planner.streak import STREAK_MESSAGES, StreakEvent, StreakTracker
from planner.timemath import (
    date_in_month,
    display_to_reminder_time,
    is_date_key,
    is_month_key,
    is_past_day,
    month_key_for,
    parse_reminder_time,
    shift_month,
    today_key,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid4().hex


def _day(month: MonthCollection, date_key: str) -> DayRecord:
    record = month.get(date_key)
    if record is None:
        return DayRecord(tasks=[], note="")
    return record


def _task_index(record: DayRecord, task_id: str) -> int:
    for index, task in enumerate(record.tasks):
        if task.id == task_id:
            return index
    raise ValidationError(f"Unknown task: {task_id}")


def _clean_text(text: str | None, what: str = "Task") -> str:
    value = (text or "").strip()
    if not value:
        raise ValidationError(f"{what} text is required")
    return value


def _clean_times(time: str | None, reminder_time: str | None) -> tuple[str | None, str | None]:
    display = (time or "").strip() or None
    reminder = (reminder_time or "").strip() or None
    if display is not None:
        try:
            derived = display_to_reminder_time(display)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None
        reminder = reminder or derived
    if reminder is not None:
        try:
            hours, minutes = parse_reminder_time(reminder)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None
        reminder = f"{hours:02d}:{minutes:02d}"
    return display, reminder


class SyncOrchestrator:
    def __init__(
        self,
        ctx: PlannerContext,
        local: LocalStore,
        remote: RemoteStore | None,
        *,
        clock: Clock,
        reminders: ReminderScheduler,
        missed_day_check_delay: float = 1.0,
    ) -> None:
        self.ctx = ctx
        self._local = local
        self._remote = remote
        self._clock = clock
        self.reminders = reminders
        self.tracker = StreakTracker(clock, persist=self._persist_streak, listeners=ctx.streak_changed)
        ctx.streak_changed.subscribe(self._announce_streak)
        self._missed_day_check = DeferredCall(
            missed_day_check_delay, self.tracker.check_missed_day, name="missed_day_check"
        )
        self._background: set[asyncio.Task] = set()
        self._pending_writes: dict[tuple, tuple[Callable[[], Awaitable[Any]], str]] = {}
        self._writers: set[tuple] = set()

    # ---- background remote writes ----

    def _spawn(self, factory: Callable[[], Awaitable[Any]], failure_text: str) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; skipped remote write (%s)", failure_text)
            return None
        task = loop.create_task(self._guarded(factory, failure_text))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _guarded(self, factory: Callable[[], Awaitable[Any]], failure_text: str) -> bool:
        try:
            await factory()
            return True
        except Exception:
            logger.exception("Remote operation failed: %s", failure_text)
            self.ctx.notify(failure_text, NOTICE_ERROR)
            return False

    def _queue_write(self, key: tuple, factory: Callable[[], Awaitable[Any]], failure_text: str) -> None:
        """
        Send writes for one remote document in order.

        Only one write per key is in flight; newer writes queued meanwhile
        collapse into the latest one, which is sent once the current one ends.
        """
        self._pending_writes[key] = (factory, failure_text)
        if key in self._writers:
            return
        self._writers.add(key)
        if self._spawn(lambda: self._drain_writes(key), failure_text) is None:
            self._writers.discard(key)
            self._pending_writes.pop(key, None)

    async def _drain_writes(self, key: tuple) -> None:
        try:
            while key in self._pending_writes:
                factory, failure_text = self._pending_writes.pop(key)
                await self._guarded(factory, failure_text)
        finally:
            self._writers.discard(key)

    async def drain(self) -> None:
        """Wait for every outstanding background remote write."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ---- local store ----

    def _read_local_month(self, month_key: str) -> MonthCollection:
        return load_month(self._local.get(month_key))

    def _write_local_month(self, month_key: str, month: MonthCollection) -> None:
        self._local.set(month_key, dump_month(month))

    def _read_local_dataset(self) -> Dataset:
        dataset: Dataset = {}
        for key in self._local.list_keys(MONTH_KEY_PREFIX):
            if is_month_key(key):
                dataset[key] = self._read_local_month(key)
        return dataset

    def _replace_local_dataset(self, dataset: Dataset) -> None:
        for key in self._local.list_keys(MONTH_KEY_PREFIX):
            self._local.remove(key)
        for key, month in dataset.items():
            self._write_local_month(key, month)

    def _read_local_streak(self) -> StreakState:
        raw = self._local.get(LOCAL_STREAK_KEY)
        if not isinstance(raw, dict):
            return StreakState()
        return StreakState.model_validate(raw)

    # ---- adopting state ----

    @property
    def remote_available(self) -> bool:
        return self._remote is not None and self.ctx.signed_in

    def _adopt(self, month_key: str, month: MonthCollection) -> None:
        self.ctx.month_key = month_key
        self.ctx.month = month
        self.ctx.dataset_changed.emit({month_key: month})
        self._update_reminders()

    def _update_reminders(self) -> None:
        """Recompute reminders from the viewed month plus today's month when another one is viewed."""
        today_month_key = month_key_for(self._clock.now())
        if today_month_key == self.ctx.month_key:
            self.reminders.update_reminders(self.ctx.month)
            return
        snapshot = dict(self._read_local_month(today_month_key))
        snapshot.update(self.ctx.month)
        self.reminders.update_reminders(snapshot)

    def _persist_month(self) -> None:
        month_key, month = self.ctx.month_key, self.ctx.month
        self._write_local_month(month_key, month)
        if self.remote_available:
            user_id, payload = self.ctx.user_id, dump_month(month)
            self._queue_write(
                ("month", user_id, month_key),
                lambda: self._remote.set_month(user_id, month_key, payload),
                "Error saving tasks",
            )

    def _persist_streak(self, state: StreakState) -> None:
        payload = state.model_dump(by_alias=True)
        self._local.set(LOCAL_STREAK_KEY, payload)
        if self.remote_available:
            user_id = self.ctx.user_id
            self._queue_write(
                ("meta", user_id, STREAK_META),
                lambda: self._remote.set_meta(user_id, STREAK_META, payload),
                "Error saving streak",
            )

    def _announce_streak(self, state: StreakState, event: StreakEvent | None) -> None:
        if event is not None:
            self.ctx.notify(STREAK_MESSAGES[event])

    # ---- lifecycle ----

    async def start(self) -> None:
        """Adopt local data for the viewed month and arm the missed-day check."""
        self._adopt(self.ctx.month_key, self._read_local_month(self.ctx.month_key))
        self.tracker.load(self._read_local_streak())
        self._missed_day_check.schedule()

    async def close(self) -> None:
        self._missed_day_check.cancel()
        self.reminders.cleanup()
        await self.drain()

    async def sign_in(self, user_id: str) -> bool:
        if self._remote is None:
            logger.warning("Sign-in requested without a remote store")
            self.ctx.notify("Cloud sync is not configured", NOTICE_ERROR)
            return False

        self.ctx.user_id = user_id
        local = self._read_local_dataset()
        try:
            remote = load_dataset(await self._remote.list_months(user_id))
        except Exception:
            logger.exception("Loading remote months failed user=%s", user_id)
            self.ctx.notify("Error loading tasks", NOTICE_ERROR)
            self._adopt(self.ctx.month_key, local.get(self.ctx.month_key, {}))
            self.tracker.load(self._read_local_streak())
            return False

        merged = merge_dataset(local, remote)
        self._replace_local_dataset(merged)
        try:
            await self._remote.batch_set_months(user_id, dump_dataset(merged))
        except Exception:
            logger.exception("Uploading merged months failed user=%s", user_id)
            self.ctx.notify("Error saving tasks", NOTICE_ERROR)

        self._adopt(self.ctx.month_key, merged.get(self.ctx.month_key, {}))
        await self._load_remote_streak()
        await self._load_flags()
        logger.info("Signed in user=%s months=%s", user_id, len(merged))
        self.ctx.notify("Welcome back!")
        return True

    def sign_out(self) -> None:
        self.ctx.user_id = None
        self.ctx.retro_lock = True
        self.ctx.import_export_enabled = False
        self.ctx.moments = []
        self._adopt(self.ctx.month_key, self._read_local_month(self.ctx.month_key))

    async def _load_remote_streak(self) -> None:
        state = self._read_local_streak()
        if self.remote_available:
            try:
                raw = await self._remote.get_meta(self.ctx.user_id, STREAK_META)
                if isinstance(raw, dict):
                    state = StreakState.model_validate(raw)
                    self._local.set(LOCAL_STREAK_KEY, state.model_dump(by_alias=True))
            except Exception:
                logger.exception("Loading streak failed")
        self.tracker.load(state)

    async def _read_flag(self, name: str, default: bool) -> bool:
        try:
            raw = await self._remote.get_meta(self.ctx.user_id, name)
        except Exception:
            logger.exception("Loading %s failed", name)
            return default
        if isinstance(raw, dict):
            return bool(raw.get("enabled"))
        return default

    async def _load_flags(self) -> None:
        self.ctx.retro_lock = await self._read_flag(RETRO_LOCK_META, True)
        self.ctx.import_export_enabled = await self._read_flag(IMPORT_EXPORT_META, False)

    async def set_retro_lock(self, enabled: bool) -> bool:
        self.ctx.retro_lock = bool(enabled)
        if not self.remote_available:
            return True
        user_id = self.ctx.user_id
        return await self._guarded(
            lambda: self._remote.set_meta(user_id, RETRO_LOCK_META, {"enabled": bool(enabled)}),
            "Error saving settings",
        )

    async def set_import_export_enabled(self, enabled: bool) -> bool:
        self.ctx.import_export_enabled = bool(enabled)
        if not self.remote_available:
            return True
        user_id = self.ctx.user_id
        return await self._guarded(
            lambda: self._remote.set_meta(user_id, IMPORT_EXPORT_META, {"enabled": bool(enabled)}),
            "Error saving settings",
        )

    # ---- navigation / refresh ----

    async def go_to_month(self, month_key: str) -> None:
        if not is_month_key(month_key):
            raise ValidationError(f"Invalid month key: {month_key!r}")
        self._adopt(month_key, self._read_local_month(month_key))
        if not self.remote_available:
            return
        try:
            raw = await self._remote.get_month(self.ctx.user_id, month_key)
        except Exception:
            logger.exception("Loading month %s failed", month_key)
            self.ctx.notify("Error loading tasks", NOTICE_ERROR)
            return
        if self.ctx.month_key != month_key:
            logger.debug("Discarding stale remote month %s", month_key)
            return
        if raw is None:
            return
        remote_month = load_month(raw)
        if dump_month(remote_month) != dump_month(self.ctx.month):
            self._write_local_month(month_key, remote_month)
            self._adopt(month_key, remote_month)

    async def prev_month(self) -> None:
        await self.go_to_month(shift_month(self.ctx.month_key, -1))

    async def next_month(self) -> None:
        await self.go_to_month(shift_month(self.ctx.month_key, 1))

    async def refresh(self) -> None:
        month_key = self.ctx.month_key
        if self.remote_available:
            try:
                raw = await self._remote.get_month(self.ctx.user_id, month_key)
            except Exception:
                logger.exception("Refreshing month %s failed", month_key)
                self.ctx.notify("Error loading tasks", NOTICE_ERROR)
                return
            month = load_month(raw)
            if raw is not None:
                self._write_local_month(month_key, month)
            self._adopt(month_key, month)
            await self._load_remote_streak()
        else:
            self._adopt(month_key, self._read_local_month(month_key))
        self.ctx.notify("Month data refreshed!")

    # ---- import / export ----

    async def export_dataset(self) -> dict | None:
        if not self.ctx.import_export_enabled:
            logger.info("Export requested while import/export is disabled")
            return None
        if self.remote_available:
            try:
                return dump_dataset(load_dataset(await self._remote.list_months(self.ctx.user_id)))
            except Exception:
                logger.exception("Exporting remote months failed")
                self.ctx.notify("Error exporting data", NOTICE_ERROR)
                return None
        return dump_dataset(self._read_local_dataset())

    async def import_dataset(self, data: Any) -> bool:
        if not self.ctx.import_export_enabled:
            logger.info("Import requested while import/export is disabled")
            return False
        if not isinstance(data, dict):
            raise ValidationError("Import data must be an object keyed by month")
        dataset = load_dataset(data)
        if self.remote_available:
            try:
                await self._remote.batch_set_months(self.ctx.user_id, dump_dataset(dataset))
            except Exception:
                logger.exception("Importing months failed")
                self.ctx.notify("Error importing data", NOTICE_ERROR)
                return False
        self._replace_local_dataset(dataset)
        self._adopt(self.ctx.month_key, dataset.get(self.ctx.month_key, {}))
        self.ctx.notify("Import successful!")
        return True

    # ---- mutations ----

    def _check_day(self, date_key: str, *, adding: bool = False) -> None:
        if not is_date_key(date_key):
            raise ValidationError(f"Invalid date: {date_key!r}")
        if not date_in_month(date_key, self.ctx.month_key):
            raise ValidationError(f"{date_key} is outside the viewed month")
        if is_past_day(date_key, self._clock.now()):
            if adding:
                raise ValidationError("Cannot add tasks for previous days")
            if self.ctx.retro_lock:
                raise ValidationError("Previous days are locked")

    def _commit(self, changes: dict[str, DayRecord]) -> None:
        today = today_key(self._clock.now())
        old_month = self.ctx.month
        new_month = dict(old_month)
        new_month.update(changes)
        self.ctx.month = new_month

        self._persist_month()

        if today in changes:
            was_complete = all_completed(_day(old_month, today).tasks)
            today_tasks = changes[today].tasks
            if was_complete or all_completed(today_tasks):
                self.tracker.record_today(today_tasks)

        self.ctx.dataset_changed.emit({self.ctx.month_key: new_month})
        self._update_reminders()

    def _replace_task(self, date_key: str, task_id: str, **update) -> Task:
        record = _day(self.ctx.month, date_key)
        index = _task_index(record, task_id)
        task = record.tasks[index].model_copy(update=update)
        tasks = list(record.tasks)
        tasks[index] = task
        self._commit({date_key: record.model_copy(update={"tasks": tasks})})
        return task

    def add_task(
        self,
        date_key: str,
        text: str,
        *,
        time: str | None = None,
        reminder_time: str | None = None,
    ) -> Task:
        text = _clean_text(text)
        display, reminder = _clean_times(time, reminder_time)
        self._check_day(date_key, adding=True)

        task = Task(id=_new_id(), text=text, completed=False, time=display, reminder_time=reminder, subtasks=[])
        record = _day(self.ctx.month, date_key)
        self._commit({date_key: record.model_copy(update={"tasks": [*record.tasks, task]})})
        return task

    def toggle_task(self, date_key: str, task_id: str, completed: bool | None = None) -> Task:
        self._check_day(date_key)
        record = _day(self.ctx.month, date_key)
        current = record.tasks[_task_index(record, task_id)]
        value = (not current.completed) if completed is None else bool(completed)
        if value:
            self.reminders.cancel_reminder(task_id)
        return self._replace_task(date_key, task_id, completed=value)

    def edit_task(
        self,
        date_key: str,
        task_id: str,
        *,
        text: str | None = None,
        time: str | None = None,
        reminder_time: str | None = None,
    ) -> Task:
        """Edit a task. ``None`` leaves a field unchanged, ``""`` clears a time."""
        self._check_day(date_key)
        record = _day(self.ctx.month, date_key)
        current = record.tasks[_task_index(record, task_id)]
        update: dict[str, Any] = {}
        if text is not None:
            update["text"] = _clean_text(text)
        if time is not None or reminder_time is not None:
            new_time = current.time if time is None else time
            if reminder_time is not None:
                new_reminder = reminder_time
            elif time is not None:
                # re-derived from the new display time
                new_reminder = None
            else:
                new_reminder = current.reminder_time
            display, reminder = _clean_times(new_time, new_reminder)
            update["time"] = display
            update["reminder_time"] = reminder
        if not update:
            return current
        self.reminders.cancel_reminder(task_id)
        return self._replace_task(date_key, task_id, **update)

    def delete_task(self, date_key: str, task_id: str) -> None:
        self._check_day(date_key)
        record = _day(self.ctx.month, date_key)
        index = _task_index(record, task_id)
        tasks = [task for i, task in enumerate(record.tasks) if i != index]
        self.reminders.cancel_reminder(task_id)
        self.ctx.drop_ui_state(task_id)
        self._commit({date_key: record.model_copy(update={"tasks": tasks})})

    def move_task(self, from_key: str, to_key: str, task_id: str, index: int | None = None) -> Task:
        self._check_day(from_key)
        if from_key == to_key:
            self._check_day(to_key)
        else:
            self._check_day(to_key, adding=True)

        source = _day(self.ctx.month, from_key)
        task = source.tasks[_task_index(source, task_id)]
        if task.due:
            task = task.model_copy(update={"due": to_key})
        remaining = [t for t in source.tasks if t.id != task_id]

        if from_key == to_key:
            target_tasks = remaining
        else:
            target_tasks = list(_day(self.ctx.month, to_key).tasks)
        position = len(target_tasks) if index is None else max(0, min(int(index), len(target_tasks)))
        target_tasks.insert(position, task)

        changes = {to_key: _day(self.ctx.month, to_key).model_copy(update={"tasks": target_tasks})}
        if from_key != to_key:
            changes[from_key] = source.model_copy(update={"tasks": remaining})
        self._commit(changes)
        return task

    def add_subtask(self, date_key: str, task_id: str, text: str) -> Subtask:
        text = _clean_text(text, "Subtask")
        self._check_day(date_key)
        record = _day(self.ctx.month, date_key)
        task = record.tasks[_task_index(record, task_id)]
        subtask = Subtask(id=_new_id(), text=text, completed=False)
        self._replace_task(date_key, task_id, subtasks=[*task.subtasks, subtask])
        return subtask

    def toggle_subtask(self, date_key: str, task_id: str, subtask_id: str, completed: bool | None = None) -> Subtask:
        self._check_day(date_key)
        record = _day(self.ctx.month, date_key)
        task = record.tasks[_task_index(record, task_id)]
        subtasks = list(task.subtasks)
        for i, sub in enumerate(subtasks):
            if sub.id == subtask_id:
                value = (not sub.completed) if completed is None else bool(completed)
                subtasks[i] = sub.model_copy(update={"completed": value})
                self._replace_task(date_key, task_id, subtasks=subtasks)
                return subtasks[i]
        raise ValidationError(f"Unknown subtask: {subtask_id}")

    def delete_subtask(self, date_key: str, task_id: str, subtask_id: str) -> None:
        self._check_day(date_key)
        record = _day(self.ctx.month, date_key)
        task = record.tasks[_task_index(record, task_id)]
        subtasks = [sub for sub in task.subtasks if sub.id != subtask_id]
        if len(subtasks) == len(task.subtasks):
            raise ValidationError(f"Unknown subtask: {subtask_id}")
        self._replace_task(date_key, task_id, subtasks=subtasks)

    def edit_note(self, date_key: str, note: str) -> DayRecord:
        self._check_day(date_key)
        record = _day(self.ctx.month, date_key).model_copy(update={"note": note or ""})
        self._commit({date_key: record})
        return record
