"""Key to struct stores, optionally persisted as a single JSON document."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from building_compliance.common.fs import read_json, write_json


class JsonStore:
    """Thread-safe mapping of string keys to JSON-serialisable dicts.

    With ``path=None`` the store lives in memory only. Otherwise every write
    rewrites the whole document atomically, which is adequate for the
    per-portfolio key counts this engine handles.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.lock = threading.Lock()
        self._data: dict[str, dict[str, Any]] = {}
        if path is not None and path.exists():
            payload = read_json(path)
            self._data = dict(payload.get("entries", {}))

    def get(self, key: str) -> dict[str, Any] | None:
        with self.lock:
            value = self._data.get(key)
            return dict(value) if value is not None else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        with self.lock:
            self._data[key] = dict(value)
            self._flush()

    def delete(self, key: str) -> bool:
        with self.lock:
            existed = self._data.pop(key, None) is not None
            if existed:
                self._flush()
            return existed

    def keys(self) -> list[str]:
        with self.lock:
            return sorted(self._data)

    def items(self) -> list[tuple[str, dict[str, Any]]]:
        with self.lock:
            return [(key, dict(self._data[key])) for key in sorted(self._data)]

    def _flush(self) -> None:
        if self.path is None:
            return
        write_json(self.path, {"entries": self._data})
