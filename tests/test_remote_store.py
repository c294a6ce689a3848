from __future__ import annotations

import asyncio

import pytest
import requests

from planner.data.api_client import ApiClient
from planner.data.remote_store import HttpRemoteStore
from planner.errors import ConflictError, TransientStoreError

MONTH = "todo-calendar-2024-05"


class _Response:
    def __init__(self, status_code: int, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class _Session:
    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def test_client_sends_identity_headers() -> None:
    session = _Session(_Response(200, {"items": {}}))
    client = ApiClient("http://api.local/", "secret", session=session, timeout=3)
    assert client.request("GET", "/v1/months", user_id="u1") == {"items": {}}
    method, url, kwargs = session.calls[0]
    assert url == "http://api.local/v1/months"
    assert kwargs["headers"] == {"X-User-Id": "u1", "X-Backend-Token": "secret"}
    assert kwargs["timeout"] == 3


def test_client_error_mapping() -> None:
    client = ApiClient("http://api.local", "secret", session=_Session(error=requests.ConnectionError("down")))
    with pytest.raises(TransientStoreError):
        client.request("GET", "/v1/months", user_id="u1")

    client = ApiClient("http://api.local", "secret", session=_Session(_Response(503, {"detail": "busy"})))
    with pytest.raises(TransientStoreError) as excinfo:
        client.request("GET", "/v1/months", user_id="u1")
    assert excinfo.value.status_code == 503

    client = ApiClient("http://api.local", "secret", session=_Session(_Response(409, {"detail": "edited"})))
    with pytest.raises(ConflictError):
        client.request("PATCH", "/v1/moments/x", user_id="u1")

    client = ApiClient("http://api.local", "secret", session=_Session(_Response(404, {"detail": "missing"})))
    assert client.request("GET", "/v1/meta/x", user_id="u1", allow_missing=True) is None


def test_client_requires_configuration() -> None:
    with pytest.raises(TransientStoreError):
        ApiClient("", "secret", session=_Session()).request("GET", "/health", user_id="u1")
    with pytest.raises(TransientStoreError):
        ApiClient("http://api.local", "", session=_Session()).request("GET", "/health", user_id="u1")
    assert not ApiClient("http://api.local", "", session=_Session()).is_enabled()


def test_http_remote_store_against_backend(backend_client) -> None:
    store = HttpRemoteStore(ApiClient("http://testserver", "test-secret", session=backend_client))
    month = {"2024-05-01": {"tasks": [{"id": "a", "text": "a", "completed": True}], "note": "n"}}

    async def scenario():
        assert await store.get_month("u1", MONTH) is None
        await store.set_month("u1", MONTH, month)
        assert await store.get_month("u1", MONTH) == month

        await store.batch_set_months("u1", {"todo-calendar-2024-06": {}})
        assert sorted(await store.list_months("u1")) == [MONTH, "todo-calendar-2024-06"]

        assert await store.get_meta("u1", "streak") is None
        await store.set_meta("u1", "streak", {"streak": 1, "lastStreakDate": "2024-05-01"})
        assert (await store.get_meta("u1", "streak"))["streak"] == 1

        created = await store.create_moment("u1", {"id": "m1", "content": "hi"})
        assert created["editCount"] == 0
        await store.update_moment("u1", "m1", {"content": "hi!"})
        with pytest.raises(ConflictError):
            await store.update_moment("u1", "m1", {"content": "again"})
        assert [m["content"] for m in await store.list_moments("u1")] == ["hi!"]
        await store.delete_moment("u1", "m1")
        assert await store.list_moments("u1") == []

    asyncio.run(scenario())
