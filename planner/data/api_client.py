from __future__ import annotations

from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from planner.errors import ConflictError, TransientStoreError


def build_session():
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        allowed_methods=("GET", "POST", "PUT", "PATCH", "DELETE"),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class ApiClient:
    def __init__(self, base_url: str, token: str, *, session=None, timeout: int = 10) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.timeout = timeout
        self._session = session if session is not None else build_session()

    def is_enabled(self) -> bool:
        return bool(self.base_url and self.token)

    def request(
        self,
        method: str,
        path: str,
        *,
        user_id: str,
        params: dict | None = None,
        json: Any = None,
        allow_missing: bool = False,
    ) -> Any:
        if not self.base_url:
            raise TransientStoreError("API_BASE_URL not configured")
        if not self.token:
            raise TransientStoreError("BACKEND_SESSION_SECRET not configured")
        if not user_id:
            raise TransientStoreError("Missing user id for API request")
        headers = {
            "X-User-Id": user_id,
            "X-Backend-Token": self.token,
        }
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=json, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise TransientStoreError(f"{method} {path} failed: {exc}") from exc

        if allow_missing and response.status_code == 404:
            return None
        if response.status_code >= 400:
            try:
                detail = response.json()
            except Exception:
                detail = response.text
            if response.status_code == 409:
                raise ConflictError(str(detail.get("detail") if isinstance(detail, dict) else detail))
            raise TransientStoreError(
                f"API error {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        if response.status_code == 204:
            return None
        return response.json()
