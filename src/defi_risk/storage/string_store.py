"""Pluggable key to string storage used to persist decryption grants.

Backends:
- InMemoryStringStorage: process-local dict (default, tests)
- JsonFileStringStorage: single JSON document on disk
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from defi_risk.storage.errors import StorageBackendError

logger = logging.getLogger(__name__)


class StringStorage(ABC):
    """Abstract key/value store holding string values.

    Implementations hold no logic beyond get/set/remove. Missing keys are not
    errors: get_item returns None and remove_item is a no-op.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability."""
        ...

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the value stored under key, or None if absent.

        Raises:
            StorageBackendError: If the backend cannot complete the read.
        """
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value.

        Raises:
            StorageBackendError: If the backend cannot complete the write.
        """
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key if present.

        Raises:
            StorageBackendError: If the backend cannot complete the deletion.
        """
        ...


class InMemoryStringStorage(StringStorage):
    """Dict-backed storage. Lives as long as the process."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class JsonFileStringStorage(StringStorage):
    """Storage persisted as one JSON object in a file.

    Writes go to a temporary file in the same directory and are renamed into
    place, so a crash never leaves a half-written document behind.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize file storage.

        Args:
            path: Location of the JSON document. Parent directories are
                created on first write.
        """
        self._path = Path(path)

    @property
    def backend_name(self) -> str:
        return "json_file"

    @property
    def path(self) -> Path:
        return self._path

    def get_item(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read_all()
        items[key] = value
        self._write_all(items)

    def remove_item(self, key: str) -> None:
        items = self._read_all()
        if key not in items:
            return
        del items[key]
        self._write_all(items)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageBackendError(f"Cannot read {self._path.name}", cause=e) from e

        if not content.strip():
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageBackendError(f"Corrupt storage file {self._path.name}", cause=e) from e

        if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
            raise StorageBackendError(f"Storage file {self._path.name} is not a string map")
        return data

    def _write_all(self, items: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, sort_keys=True, indent=2)
            os.replace(tmp_name, self._path)
        except OSError as e:
            raise StorageBackendError(f"Cannot write {self._path.name}", cause=e) from e
        logger.debug("Wrote %d storage entries to %s", len(items), self._path.name)
