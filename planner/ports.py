"""
Ports (interfaces) the planner engine depends on.

The engine only talks to these Protocols, so local storage, the remote
document store, notifications and the clock are swappable (and faked in tests).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

JsonValue = Any
# Raw JSON-compatible month payload: {"YYYY-MM-DD": {"tasks": [...], "note": "..."}}.
RawMonth = dict[str, Any]


class Clock(Protocol):
    def now(self) -> datetime: ...


class LocalStore(Protocol):
    """Synchronous key/value storage. Unreadable values read as absent."""

    def get(self, key: str) -> JsonValue | None: ...
    def set(self, key: str, value: JsonValue) -> None: ...
    def list_keys(self, prefix: str) -> list[str]: ...
    def remove(self, key: str) -> None: ...


class RemoteStore(Protocol):
    """Per-user month documents and meta values. Every call may raise TransientStoreError."""

    async def list_months(self, user_id: str) -> dict[str, RawMonth]: ...
    async def get_month(self, user_id: str, month_key: str) -> RawMonth | None: ...
    async def set_month(self, user_id: str, month_key: str, month: RawMonth) -> None: ...
    async def batch_set_months(self, user_id: str, months: dict[str, RawMonth]) -> None: ...
    async def get_meta(self, user_id: str, name: str) -> JsonValue | None: ...
    async def set_meta(self, user_id: str, name: str, value: JsonValue) -> None: ...


class MomentRemote(Protocol):
    async def list_moments(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]: ...
    async def create_moment(self, user_id: str, moment: dict[str, Any]) -> dict[str, Any]: ...
    async def update_moment(self, user_id: str, moment_id: str, updates: dict[str, Any]) -> dict[str, Any]: ...
    async def delete_moment(self, user_id: str, moment_id: str) -> None: ...


class NotificationSink(Protocol):
    """Shows a user-visible notification; a repeated dedupe_key replaces rather than stacks."""

    def show(self, title: str, body: str, dedupe_key: str) -> Any: ...
