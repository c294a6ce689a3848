from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

from planner.data.api_client import ApiClient
from planner.errors import TransientStoreError

logger = logging.getLogger(__name__)


class HttpRemoteStore:
    """
    RemoteStore + MomentRemote over the backend HTTP API.

    The blocking requests calls run in a worker thread so the event loop
    (and the reminder timers on it) never stall on the network.
    """

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def _call(self, method: str, path: str, user_id: str, **kwargs) -> Any:
        return await asyncio.to_thread(self._client.request, method, path, user_id=user_id, **kwargs)

    # ---- months ----

    async def list_months(self, user_id: str) -> dict[str, dict]:
        payload = await self._call("GET", "/v1/months", user_id)
        items = (payload or {}).get("items") or {}
        if not isinstance(items, dict):
            raise TransientStoreError("Malformed month listing")
        return items

    async def get_month(self, user_id: str, month_key: str) -> dict | None:
        payload = await self._call("GET", f"/v1/months/{quote(month_key)}", user_id, allow_missing=True)
        if payload is None:
            return None
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    async def set_month(self, user_id: str, month_key: str, month: dict) -> None:
        await self._call("PUT", f"/v1/months/{quote(month_key)}", user_id, json={"data": month})

    async def batch_set_months(self, user_id: str, months: dict[str, dict]) -> None:
        await self._call("POST", "/v1/months/batch", user_id, json={"months": months})

    # ---- meta ----

    async def get_meta(self, user_id: str, name: str) -> Any | None:
        payload = await self._call("GET", f"/v1/meta/{quote(name)}", user_id, allow_missing=True)
        if payload is None:
            return None
        return payload.get("value")

    async def set_meta(self, user_id: str, name: str, value: Any) -> None:
        await self._call("PUT", f"/v1/meta/{quote(name)}", user_id, json={"value": value})

    # ---- moments ----

    async def list_moments(self, user_id: str, limit: int = 50) -> list[dict]:
        payload = await self._call("GET", "/v1/moments", user_id, params={"limit": int(limit)})
        return list((payload or {}).get("items") or [])

    async def create_moment(self, user_id: str, moment: dict) -> dict:
        return await self._call("POST", "/v1/moments", user_id, json=moment)

    async def update_moment(self, user_id: str, moment_id: str, updates: dict) -> dict:
        return await self._call("PATCH", f"/v1/moments/{quote(moment_id)}", user_id, json=updates)

    async def delete_moment(self, user_id: str, moment_id: str) -> None:
        await self._call("DELETE", f"/v1/moments/{quote(moment_id)}", user_id)
