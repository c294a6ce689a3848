from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from planner.constants import (
    DAY_STATUS_COMPLETE,
    DAY_STATUS_EMPTY,
    DAY_STATUS_INCOMPLETE,
    DAY_STATUS_NO_TASKS,
)
from planner.timemath import is_date_key, is_month_key

logger = logging.getLogger(__name__)

LEGACY_NOTE_TASK_ID = "day_note"


class _Record(BaseModel):
    # Unknown keys (edit-mode, expanded-subtasks, ...) are dropped on read.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


def _coerce_id(value):
    if value is None:
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


class Subtask(_Record):
    id: str
    text: str = Field("", validation_alias=AliasChoices("text", "title"))
    completed: bool = Field(False, validation_alias=AliasChoices("completed", "done"))

    @field_validator("id", mode="before")
    @classmethod
    def _id_str(cls, value):
        return _coerce_id(value)

    @field_validator("text", mode="before")
    @classmethod
    def _text_str(cls, value):
        return "" if value is None else value


class Task(_Record):
    id: str
    text: str = Field("", validation_alias=AliasChoices("text", "title"))
    completed: bool = Field(False, validation_alias=AliasChoices("completed", "done"))
    time: Optional[str] = None
    reminder_time: Optional[str] = None
    due: Optional[str] = None
    subtasks: List[Subtask] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id_str(cls, value):
        return _coerce_id(value)

    @field_validator("text", mode="before")
    @classmethod
    def _text_str(cls, value):
        return "" if value is None else value

    @field_validator("time", "reminder_time", "due", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("subtasks", mode="before")
    @classmethod
    def _subtasks(cls, value):
        if not isinstance(value, list):
            return []
        clean = []
        for item in value:
            try:
                clean.append(item if isinstance(item, Subtask) else Subtask.model_validate(item))
            except ValidationError:
                logger.debug("Dropping malformed subtask: %r", item)
        return clean

    @property
    def is_fully_completed(self) -> bool:
        return self.completed and all(sub.completed for sub in self.subtasks)


class DayRecord(_Record):
    tasks: List[Task] = Field(default_factory=list)
    note: str = ""

    @field_validator("tasks", mode="before")
    @classmethod
    def _tasks(cls, value):
        if not isinstance(value, list):
            return []
        return _parse_tasks(value)

    @field_validator("note", mode="before")
    @classmethod
    def _note(cls, value):
        return "" if value is None else str(value)

    def defines(self, field_name: str) -> bool:
        return field_name in self.model_fields_set


class StreakState(_Record):
    streak: int = 0
    last_streak_date: Optional[str] = None

    @field_validator("streak", mode="before")
    @classmethod
    def _non_negative(cls, value):
        try:
            return max(0, int(value or 0))
        except (TypeError, ValueError):
            return 0

    @field_validator("last_streak_date", mode="before")
    @classmethod
    def _date_or_none(cls, value):
        return value if is_date_key(value) else None


class Moment(_Record):
    id: str
    content: str = ""
    mood: Optional[str] = None
    category: Optional[str] = None
    edit_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_str(cls, value):
        return _coerce_id(value)


MonthCollection = Dict[str, DayRecord]
Dataset = Dict[str, MonthCollection]


def _parse_tasks(items: list) -> list[Task]:
    tasks = []
    for item in items:
        if isinstance(item, Task):
            tasks.append(item)
            continue
        try:
            tasks.append(Task.model_validate(item))
        except ValidationError:
            logger.debug("Dropping malformed task: %r", item)
    return tasks


def as_day_record(raw: Any) -> DayRecord | None:
    """Read one stored day, upgrading the legacy bare task list to ``{tasks, note: ""}``."""
    if isinstance(raw, DayRecord):
        return raw
    if isinstance(raw, list):
        note = ""
        items = []
        for item in raw:
            if isinstance(item, dict) and item.get("id") == LEGACY_NOTE_TASK_ID and "dayNote" in item:
                note = str(item.get("dayNote") or "")
                continue
            items.append(item)
        return DayRecord(tasks=_parse_tasks(items), note=note)
    if isinstance(raw, dict):
        try:
            return DayRecord.model_validate(raw)
        except ValidationError:
            logger.debug("Dropping malformed day record: %r", raw)
            return None
    return None


def load_month(raw: Any) -> MonthCollection:
    if not isinstance(raw, dict):
        return {}
    month: MonthCollection = {}
    for key, value in raw.items():
        if not is_date_key(key):
            continue
        record = as_day_record(value)
        if record is not None:
            month[key] = record
    return month


def load_dataset(raw: Any) -> Dataset:
    if not isinstance(raw, dict):
        return {}
    return {key: load_month(value) for key, value in raw.items() if is_month_key(key)}


def dump_day(record: DayRecord) -> dict:
    return record.model_dump(by_alias=True, exclude_none=True)


def dump_month(month: MonthCollection) -> dict:
    return {key: dump_day(record) for key, record in sorted(month.items())}


def dump_dataset(dataset: Dataset) -> dict:
    return {key: dump_month(month) for key, month in sorted(dataset.items())}


def dump_task(task: Task) -> dict:
    return task.model_dump(by_alias=True, exclude_none=True)


def all_completed(tasks: list[Task]) -> bool:
    if not tasks:
        return False
    return all(task.is_fully_completed for task in tasks)


def day_status(tasks: list[Task]) -> str:
    if not tasks:
        return DAY_STATUS_EMPTY
    if all(task.completed for task in tasks):
        return DAY_STATUS_COMPLETE
    if any(task.completed for task in tasks):
        return DAY_STATUS_INCOMPLETE
    return DAY_STATUS_NO_TASKS
