from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class MemoryLocalStore:
    """In-process key/value store holding JSON strings, like browser localStorage."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._items: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def _read_raw(self, key: str) -> str | None:
        return self._items.get(key)

    def _write_all(self) -> None:
        return

    def get(self, key: str) -> Any | None:
        raw = self._read_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Unreadable local value for %s; treating as absent", key)
            return None

    def set(self, key: str, value: Any) -> None:
        self._items[key] = json.dumps(value, ensure_ascii=False)
        self._write_all()

    def set_raw(self, key: str, raw: str) -> None:
        self._items[key] = raw
        self._write_all()

    def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._items if key.startswith(prefix))

    def remove(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._write_all()


class JsonFileLocalStore(MemoryLocalStore):
    """
    Local store persisted to a single JSON file.

    Every write rewrites the file through a temp file + os.replace, so a crash
    never leaves a half-written store behind. A corrupt file reads as empty.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        super().__init__()
        self._items = self._load_file()
        logger.info("Local store ready path=%s keys=%s", self._path, len(self._items))

    @property
    def path(self) -> Path:
        return self._path

    def _load_file(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Local store %s is unreadable; starting empty", self._path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(self._items, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp_path, self._path)
        except OSError:
            logger.exception("Failed to write local store %s", self._path)
