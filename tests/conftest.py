# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from planner.bootstrap import Planner, create_planner
from planner.context import Notice
from planner.data.local_store import MemoryLocalStore
from planner.settings import PlannerSettings

from .fakes import FakeClock, FakeRemoteStore, FakeSink

# Wednesday 2024-05-15 09:00 UTC
NOW = datetime(2024, 5, 15, 9, 0, tzinfo=timezone.utc)
TODAY = "2024-05-15"
YESTERDAY = "2024-05-14"
TOMORROW = "2024-05-16"
MONTH = "todo-calendar-2024-05"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture()
def local() -> MemoryLocalStore:
    return MemoryLocalStore()


@pytest.fixture()
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture()
def planner_settings(tmp_path: Path) -> PlannerSettings:
    return PlannerSettings(
        data_dir=tmp_path / "planner",
        reminder_debounce_ms=100,
        missed_day_check_delay_s=0.0,
    )


@pytest.fixture()
def planner(planner_settings, local, remote, clock, sink) -> Planner:
    """Planner wired with in-memory stores and a frozen clock."""
    return create_planner(planner_settings, local=local, remote=remote, clock=clock, sink=sink)


@pytest.fixture()
def notices(planner: Planner) -> list[Notice]:
    seen: list[Notice] = []
    planner.ctx.notice.subscribe(seen.append)
    return seen


@pytest.fixture()
def backend_app(tmp_path: Path, monkeypatch):
    import backend.db as backend_db
    import backend.settings as backend_settings

    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'backend.db'}")
    monkeypatch.setenv("BACKEND_SESSION_SECRET", "test-secret")
    monkeypatch.setenv("ALLOWED_USERS", "")
    backend_settings.reset_settings()
    backend_db._engine = None
    backend_db._session_factory = None

    from backend.main import create_app

    yield create_app()

    backend_settings.reset_settings()
    backend_db._engine = None
    backend_db._session_factory = None


@pytest.fixture()
def backend_client(backend_app):
    from fastapi.testclient import TestClient

    with TestClient(backend_app) as client:
        yield client


def auth_headers(user_id: str = "user-1", token: str = "test-secret") -> dict:
    return {"X-User-Id": user_id, "X-Backend-Token": token}
