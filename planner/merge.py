"""Reconciliation of local and remote task data.

Remote wins on conflict, the union wins on absence. All functions are pure:
inputs are never mutated and equal inputs always give equal outputs.
Legacy shapes must already be normalized (``planner.models.load_month``).
"""

from __future__ import annotations

from planner.models import Dataset, DayRecord, MonthCollection


def merge_day(local: DayRecord | None, remote: DayRecord | None) -> DayRecord:
    if remote is None:
        return local if local is not None else DayRecord(tasks=[], note="")
    if local is None:
        return remote
    tasks = remote.tasks if remote.defines("tasks") else local.tasks
    note = remote.note if remote.defines("note") else local.note
    return DayRecord(tasks=list(tasks), note=note)


def merge_month(local: MonthCollection | None, remote: MonthCollection | None) -> MonthCollection:
    local = local or {}
    remote = remote or {}
    merged: MonthCollection = dict(local)
    for key, remote_day in remote.items():
        if key in merged:
            merged[key] = merge_day(merged[key], remote_day)
        else:
            merged[key] = remote_day
    return merged


def merge_dataset(local: Dataset | None, remote: Dataset | None) -> Dataset:
    local = local or {}
    remote = remote or {}
    merged: Dataset = {key: dict(month) for key, month in local.items()}
    for key, remote_month in remote.items():
        merged[key] = merge_month(local.get(key), remote_month)
    return merged
