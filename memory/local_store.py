"""
ARAG Agent Copilot — Local key-value persistence.
A single JSON object on disk mapping keys to string values, the same shape
browser local storage has. Holds cloud settings, the playbook, the handbook
and one history partition per client.
"""
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from orchestrator.errors import LocalStoreError

logger = logging.getLogger("copilot.local_store")


class LocalKeyValueStore:
    """JSON-file backed string store. Writes are atomic."""

    def __init__(self, path):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    # -------------------------------------------------------
    # File I/O
    # -------------------------------------------------------

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise LocalStoreError(f"Cannot read workspace file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise LocalStoreError(f"Workspace file {self.path} is not a JSON object")
        return data

    def _dump(self, data: dict):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=self.path.name + ".", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as e:
            raise LocalStoreError(f"Cannot write workspace file {self.path}: {e}") from e

    # -------------------------------------------------------
    # Public API
    # -------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str):
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)
        logger.debug(f"Stored key {key} ({len(value)} chars)")

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._load()
            if key not in data:
                return False
            del data[key]
            self._dump(data)
        return True

    def keys(self, prefix: str = "") -> list:
        with self._lock:
            return sorted(k for k in self._load() if k.startswith(prefix))
