"""
Local storage for session secrets.

Stores one opaque string per storage key (``ai_session_key``,
``ai_session_key_eth``). Encryption at rest is the concern of the concrete
store; the file store only restricts permissions to the owner.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SecretStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemorySecretStore:
    """Process-local store. Secrets do not survive a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileSecretStore:
    """
    JSON file in a private directory.

    The file is rewritten atomically and created with mode 0600.
    """

    FILENAME = "session_secrets.json"

    def __init__(self, directory: str | Path):
        self._dir = Path(directory)
        self._path = self._dir / self.FILENAME
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError:
            # Unreadable content is treated like a malformed secret upstream
            logger.warning(f"Secret store {self._path} is not valid JSON, ignoring it")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Secret store {self._path} has unexpected shape, ignoring it")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: Dict[str, str]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        tmp_path = self._path.with_suffix(".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_path, self._path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)


def create_secret_store(directory: str = "") -> SecretStore:
    """File store when a directory is configured, in-memory otherwise."""
    if directory:
        return FileSecretStore(directory)
    return InMemorySecretStore()


__all__ = ["SecretStore", "InMemorySecretStore", "FileSecretStore", "create_secret_store"]
