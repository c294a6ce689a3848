from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from planner.bootstrap import create_planner
from planner.context import NOTICE_ERROR
from planner.errors import ValidationError
from planner.models import load_month

from .conftest import MONTH, TODAY, TOMORROW, YESTERDAY
from .fakes import FakeRemoteStore

USER = "user-1"


@pytest_asyncio.fixture()
async def started(planner):
    await planner.sync.start()
    yield planner
    await planner.sync.close()


def _local_month(local, key=MONTH):
    return load_month(local.get(key))


@pytest.mark.asyncio
async def test_start_adopts_local_data(planner, local) -> None:
    local.set(MONTH, {TODAY: {"tasks": [{"id": "t", "text": "saved"}], "note": "hi"}})
    changes = []
    planner.ctx.dataset_changed.subscribe(changes.append)

    await planner.sync.start()

    assert planner.ctx.month[TODAY].note == "hi"
    assert list(changes[-1]) == [MONTH]
    await planner.sync.close()


@pytest.mark.asyncio
async def test_add_task_writes_local_immediately(started, local) -> None:
    task = started.sync.add_task(TODAY, "  buy milk ", time="10:30 AM")

    assert task.text == "buy milk"
    assert task.reminder_time == "10:30"
    stored = _local_month(local)
    assert [t.id for t in stored[TODAY].tasks] == [task.id]


@pytest.mark.asyncio
async def test_add_task_validation(started) -> None:
    with pytest.raises(ValidationError):
        started.sync.add_task(TODAY, "   ")
    with pytest.raises(ValidationError):
        started.sync.add_task(YESTERDAY, "too late")
    with pytest.raises(ValidationError):
        started.sync.add_task(TODAY, "x", reminder_time="25:00")
    with pytest.raises(ValidationError):
        started.sync.add_task("2024-06-01", "other month")
    assert started.ctx.month == {}


@pytest.mark.asyncio
async def test_completing_today_counts_the_streak(started, local, notices) -> None:
    task = started.sync.add_task(TODAY, "only task")

    started.sync.toggle_task(TODAY, task.id)
    assert started.sync.tracker.streak == 1
    assert local.get("planner-streak") == {"streak": 1, "lastStreakDate": TODAY}
    assert "🔥 Streak increased!" in [n.text for n in notices]

    started.sync.toggle_task(TODAY, task.id)
    assert started.sync.tracker.streak == 0
    assert local.get("planner-streak") == {"streak": 0, "lastStreakDate": None}


@pytest.mark.asyncio
async def test_adding_a_task_reverts_a_counted_day(started) -> None:
    first = started.sync.add_task(TODAY, "first")
    started.sync.toggle_task(TODAY, first.id)
    assert started.sync.tracker.streak == 1

    started.sync.add_task(TODAY, "second")
    assert started.sync.tracker.streak == 0


@pytest.mark.asyncio
async def test_subtasks_gate_completion(started) -> None:
    task = started.sync.add_task(TODAY, "parent")
    sub = started.sync.add_subtask(TODAY, task.id, "child")
    started.sync.toggle_task(TODAY, task.id)
    assert started.sync.tracker.streak == 0

    started.sync.toggle_subtask(TODAY, task.id, sub.id)
    assert started.sync.tracker.streak == 1

    started.sync.delete_subtask(TODAY, task.id, sub.id)
    assert started.ctx.month[TODAY].tasks[0].subtasks == []
    with pytest.raises(ValidationError):
        started.sync.delete_subtask(TODAY, task.id, sub.id)


@pytest.mark.asyncio
async def test_mutations_drive_reminders(started) -> None:
    task = started.sync.add_task(TODAY, "call", reminder_time="10:00")
    started.reminders.force_update()
    assert started.reminders.scheduled_task_ids() == [task.id]

    started.sync.toggle_task(TODAY, task.id)
    assert started.reminders.scheduled_count == 0

    started.sync.toggle_task(TODAY, task.id)
    started.reminders.force_update()
    assert started.reminders.scheduled_task_ids() == [task.id]

    started.sync.delete_task(TODAY, task.id)
    assert started.reminders.scheduled_count == 0


@pytest.mark.asyncio
async def test_every_mutation_publishes_a_new_month_object(started) -> None:
    before = started.ctx.month
    started.sync.edit_note(TODAY, "note")
    assert started.ctx.month is not before
    assert started.ctx.month[TODAY].note == "note"


@pytest.mark.asyncio
async def test_edit_task_rederives_reminder_from_time(started) -> None:
    task = started.sync.add_task(TODAY, "standup", time="09:30 AM")
    edited = started.sync.edit_task(TODAY, task.id, text="stand-up", time="11:00 AM")
    assert edited.text == "stand-up"
    assert edited.reminder_time == "11:00"

    cleared = started.sync.edit_task(TODAY, task.id, time="")
    assert cleared.time is None
    assert cleared.reminder_time is None


@pytest.mark.asyncio
async def test_move_task_between_days(started) -> None:
    a = started.sync.add_task(TODAY, "a")
    b = started.sync.add_task(TODAY, "b")
    started.sync.move_task(TODAY, TOMORROW, a.id)
    assert [t.id for t in started.ctx.month[TODAY].tasks] == [b.id]
    assert [t.id for t in started.ctx.month[TOMORROW].tasks] == [a.id]

    started.sync.move_task(TOMORROW, TODAY, a.id, index=0)
    assert [t.id for t in started.ctx.month[TODAY].tasks] == [a.id, b.id]

    with pytest.raises(ValidationError):
        started.sync.move_task(TODAY, YESTERDAY, a.id)


@pytest.mark.asyncio
async def test_retro_lock_guards_past_days(started, local) -> None:
    local.set(MONTH, {YESTERDAY: {"tasks": [{"id": "old", "text": "old"}], "note": ""}})
    await started.sync.refresh()

    with pytest.raises(ValidationError):
        started.sync.toggle_task(YESTERDAY, "old")

    assert await started.sync.set_retro_lock(False) is True
    started.sync.toggle_task(YESTERDAY, "old")
    assert started.ctx.month[YESTERDAY].tasks[0].completed is True
    with pytest.raises(ValidationError):
        started.sync.add_task(YESTERDAY, "still not allowed")


@pytest.mark.asyncio
async def test_sign_in_merges_and_uploads(started, local, remote) -> None:
    local.set(MONTH, {"2024-05-01": {"tasks": [{"id": "l", "text": "local"}], "note": "mine"}})
    remote.months[USER] = {
        MONTH: {"2024-05-02": {"tasks": [{"id": "r", "text": "remote"}], "note": ""}},
        "todo-calendar-2024-06": {"2024-06-01": {"tasks": [], "note": "june"}},
    }
    remote.meta[USER] = {"streak": {"streak": 2, "lastStreakDate": YESTERDAY}}

    assert await started.sync.sign_in(USER) is True

    assert sorted(started.ctx.month) == ["2024-05-01", "2024-05-02"]
    assert local.list_keys("todo-calendar-") == [MONTH, "todo-calendar-2024-06"]
    assert sorted(remote.months[USER][MONTH]) == ["2024-05-01", "2024-05-02"]
    assert remote.call_names().count("batch_set_months") == 1
    assert started.sync.tracker.streak == 2
    assert started.ctx.retro_lock is True
    assert started.ctx.import_export_enabled is False


@pytest.mark.asyncio
async def test_sign_in_against_empty_remote_uploads_local(started, local, remote) -> None:
    local.set(MONTH, {TODAY: {"tasks": [], "note": "offline"}})
    await started.sync.sign_in(USER)
    assert remote.months[USER][MONTH][TODAY]["note"] == "offline"


@pytest.mark.asyncio
async def test_sign_in_read_failure_keeps_local(started, local, remote, notices) -> None:
    local.set(MONTH, {TODAY: {"tasks": [], "note": "offline"}})
    remote.fail.add("list_months")

    assert await started.sync.sign_in(USER) is False

    assert started.ctx.month[TODAY].note == "offline"
    assert "batch_set_months" not in remote.call_names()
    assert any(n.level == NOTICE_ERROR for n in notices)


@pytest.mark.asyncio
async def test_remote_write_failure_is_a_notice(started, local, remote, notices) -> None:
    await started.sync.sign_in(USER)
    remote.fail.add("set_month")

    started.sync.add_task(TODAY, "offline-ish")
    await started.sync.drain()

    assert [t.text for t in _local_month(local)[TODAY].tasks] == ["offline-ish"]
    assert "Error saving tasks" in [n.text for n in notices if n.level == NOTICE_ERROR]


@pytest.mark.asyncio
async def test_signed_in_mutations_reach_remote(started, remote) -> None:
    await started.sync.sign_in(USER)
    task = started.sync.add_task(TODAY, "sync me")
    started.sync.toggle_task(TODAY, task.id)
    await started.sync.drain()

    assert remote.months[USER][MONTH][TODAY]["tasks"][0]["completed"] is True
    assert remote.meta[USER]["streak"] == {"streak": 1, "lastStreakDate": TODAY}


@pytest.mark.asyncio
async def test_navigation_prefers_a_differing_remote_month(started, local, remote) -> None:
    await started.sync.sign_in(USER)
    june = "todo-calendar-2024-06"
    local.set(june, {"2024-06-03": {"tasks": [], "note": "local june"}})
    remote.months[USER][june] = {"2024-06-03": {"tasks": [], "note": "remote june"}}

    await started.sync.next_month()

    assert started.ctx.month_key == june
    assert started.ctx.month["2024-06-03"].note == "remote june"
    assert _local_month(local, june)["2024-06-03"].note == "remote june"


@pytest.mark.asyncio
async def test_navigation_keeps_local_when_remote_is_absent(started, local, remote) -> None:
    await started.sync.sign_in(USER)
    april = "todo-calendar-2024-04"
    local.set(april, {"2024-04-03": {"tasks": [], "note": "local only"}})

    await started.sync.prev_month()

    assert started.ctx.month_key == april
    assert started.ctx.month["2024-04-03"].note == "local only"


class GatedRemote(FakeRemoteStore):
    def __init__(self) -> None:
        super().__init__()
        self.gates: dict[str, asyncio.Event] = {}

    async def get_month(self, user_id, month_key):
        gate = self.gates.get(month_key)
        if gate is not None:
            await gate.wait()
        return await super().get_month(user_id, month_key)


@pytest.mark.asyncio
async def test_stale_navigation_result_is_discarded(planner_settings, local, clock, sink) -> None:
    remote = GatedRemote()
    planner = create_planner(planner_settings, local=local, remote=remote, clock=clock, sink=sink)
    await planner.sync.start()
    await planner.sync.sign_in(USER)

    june, july = "todo-calendar-2024-06", "todo-calendar-2024-07"
    remote.months[USER][june] = {"2024-06-01": {"tasks": [], "note": "late"}}
    gate = asyncio.Event()
    remote.gates[june] = gate

    slow = asyncio.create_task(planner.sync.go_to_month(june))
    await asyncio.sleep(0)
    await planner.sync.go_to_month(july)
    gate.set()
    await slow

    assert planner.ctx.month_key == july
    assert planner.ctx.month == {}
    assert local.get(june) is None
    await planner.sync.close()


@pytest.mark.asyncio
async def test_refresh_rereads_remote(started, remote, notices) -> None:
    await started.sync.sign_in(USER)
    remote.months[USER][MONTH] = {TODAY: {"tasks": [{"id": "x", "text": "from elsewhere"}], "note": ""}}

    await started.sync.refresh()

    assert [t.id for t in started.ctx.month[TODAY].tasks] == ["x"]
    assert notices[-1].text == "Month data refreshed!"


@pytest.mark.asyncio
async def test_missed_day_resets_streak_on_start(planner, local, notices) -> None:
    local.set("planner-streak", {"streak": 6, "lastStreakDate": "2024-05-10"})
    await planner.sync.start()

    assert planner.sync.tracker.streak == 0
    assert local.get("planner-streak") == {"streak": 0, "lastStreakDate": None}
    assert "Streak reset!" in [n.text for n in notices]
    await planner.sync.close()


@pytest.mark.asyncio
async def test_import_export_is_gated(started, local) -> None:
    assert await started.sync.export_dataset() is None
    assert await started.sync.import_dataset({}) is False

    await started.sync.set_import_export_enabled(True)
    started.sync.edit_note(TODAY, "exported")
    exported = await started.sync.export_dataset()
    assert exported[MONTH][TODAY]["note"] == "exported"

    imported = {"todo-calendar-2024-01": {"2024-01-02": {"tasks": [], "note": "old"}}, "junk": 1}
    assert await started.sync.import_dataset(imported) is True
    assert local.list_keys("todo-calendar-") == ["todo-calendar-2024-01"]
    assert started.ctx.month == {}


@pytest.mark.asyncio
async def test_sign_out_returns_to_local_data(started, local, remote) -> None:
    remote.months[USER] = {MONTH: {TODAY: {"tasks": [], "note": "cloud"}}}
    await started.sync.sign_in(USER)
    started.sync.sign_out()

    assert not started.ctx.signed_in
    assert started.ctx.month[TODAY].note == "cloud"


@pytest.mark.asyncio
async def test_ui_flags_are_not_persisted(started, local) -> None:
    task = started.sync.add_task(TODAY, "flagged")
    started.ctx.set_ui_flag(task.id, "editing", True)
    assert started.ctx.ui_flag(task.id, "editing") is True
    assert "editing" not in local.get(MONTH)[TODAY]["tasks"][0]

    started.sync.delete_task(TODAY, task.id)
    assert started.ctx.ui_flag(task.id, "editing") is None


@pytest.mark.asyncio
async def test_reminders_survive_month_navigation(started) -> None:
    task = started.sync.add_task(TODAY, "call", reminder_time="10:00")
    started.reminders.force_update()
    assert started.reminders.scheduled_task_ids() == [task.id]

    await started.sync.next_month()
    started.reminders.force_update()
    assert started.reminders.scheduled_task_ids() == [task.id]

    await started.sync.prev_month()
    started.reminders.force_update()
    assert started.reminders.scheduled_task_ids() == [task.id]


class SlowFirstWriteRemote(FakeRemoteStore):
    def __init__(self) -> None:
        super().__init__()
        self.first_delay = 0.1
        self.received: list[list[str]] = []

    async def set_month(self, user_id, month_key, month):
        if self.first_delay:
            delay, self.first_delay = self.first_delay, 0
            await asyncio.sleep(delay)
        self.received.append([t["text"] for t in month.get(TODAY, {}).get("tasks", [])])
        await super().set_month(user_id, month_key, month)


@pytest.mark.asyncio
async def test_month_writes_reach_the_remote_in_order(planner_settings, local, clock, sink) -> None:
    remote = SlowFirstWriteRemote()
    planner = create_planner(planner_settings, local=local, remote=remote, clock=clock, sink=sink)
    await planner.sync.start()
    await planner.sync.sign_in(USER)

    planner.sync.add_task(TODAY, "one")
    await asyncio.sleep(0.01)
    planner.sync.add_task(TODAY, "two")
    planner.sync.add_task(TODAY, "three")
    await planner.sync.drain()

    assert remote.received[-1] == ["one", "two", "three"]
    assert [t["text"] for t in remote.months[USER][MONTH][TODAY]["tasks"]] == ["one", "two", "three"]
    # the two later writes collapse into one
    assert remote.call_names().count("set_month") == 2
    await planner.sync.close()
