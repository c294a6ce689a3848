from __future__ import annotations

import logging
from dataclasses import dataclass

from planner.context import PlannerContext
from planner.data.api_client import ApiClient
from planner.data.local_store import JsonFileLocalStore
from planner.data.remote_store import HttpRemoteStore
from planner.logging_config import configure_logging
from planner.moments import MomentService
from planner.notifications import LoggingNotificationSink
from planner.reminders import ReminderScheduler
from planner.settings import PlannerSettings, get_settings
from planner.sync import SyncOrchestrator
from planner.timemath import SystemClock, month_key_for

logger = logging.getLogger(__name__)


@dataclass
class Planner:
    ctx: PlannerContext
    sync: SyncOrchestrator
    reminders: ReminderScheduler
    moments: MomentService


def create_planner(
    settings: PlannerSettings | None = None,
    *,
    local=None,
    remote=None,
    clock=None,
    sink=None,
) -> Planner:
    """Wire a planner from settings; any port can be passed in explicitly instead."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    clock = clock or SystemClock(settings.timezone)
    local = local if local is not None else JsonFileLocalStore(settings.local_store_path)
    if remote is None and settings.remote_enabled:
        client = ApiClient(settings.api_base_url, settings.backend_token, timeout=settings.http_timeout)
        remote = HttpRemoteStore(client)
    if remote is None:
        logger.info("Remote store disabled; running local-only")

    ctx = PlannerContext(month_key=month_key_for(clock.now()))
    reminders = ReminderScheduler(
        clock,
        sink or LoggingNotificationSink(),
        lead_minutes=settings.reminder_lead_minutes,
        max_ahead_hours=settings.reminder_max_ahead_hours,
        debounce_ms=settings.reminder_debounce_ms,
        listeners=ctx.reminder_fired,
    )
    sync = SyncOrchestrator(
        ctx,
        local,
        remote,
        clock=clock,
        reminders=reminders,
        missed_day_check_delay=settings.missed_day_check_delay_s,
    )
    return Planner(ctx=ctx, sync=sync, reminders=reminders, moments=MomentService(ctx, remote, clock=clock))
