"""Key-value stores backing the learning data, saved patterns and saved letters."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol, TypeVar

from core.utils.errors import StorageReadError, StorageWriteError

LEARNING_EVENTS_KEY = "learning_events"
TEMPLATE_PATTERNS_KEY = "template_patterns"
SAVED_MAPPING_PATTERNS_KEY = "saved_mapping_patterns"
SAVED_LETTERS_KEY = "saved_demand_letters"

_STORE_VERSION = 1

logger = logging.getLogger("letterfill.storage")

T = TypeVar("T")


class KeyValueStore(Protocol):
    """Named collections of JSON-compatible values."""

    def get(self, key: str) -> Any | None:
        """Return the stored value or None when the key is absent."""

    def set(self, key: str, value: Any) -> None:
        """Replace one collection."""

    def set_many(self, items: Mapping[str, Any]) -> None:
        """Replace several collections in a single write."""

    def delete(self, key: str) -> bool:
        """Remove a collection; return False when it did not exist."""


class JsonFileStore:
    """Persist collections in one versioned JSON file.

    Every operation reads the whole file, mutates it in memory and replaces the
    file atomically, which keeps the window for concurrent writers small.
    """

    def __init__(self, store_path: Path) -> None:
        self._store_path = store_path

    @property
    def path(self) -> Path:
        return self._store_path

    def get(self, key: str) -> Any | None:
        return self._read_data().get(key)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, items: Mapping[str, Any]) -> None:
        data = self._read_data_for_write()
        data.update(items)
        self._write_data(data)

    def delete(self, key: str) -> bool:
        data = self._read_data_for_write()
        if key not in data:
            return False
        del data[key]
        self._write_data(data)
        return True

    def _read_data_for_write(self) -> dict[str, Any]:
        try:
            return self._read_data()
        except StorageReadError as exc:
            if not self._store_path.is_file():
                raise StorageWriteError(f"Cannot write store: {self._store_path}") from exc
            # Reads already degraded to empty; keep the bad file for inspection.
            backup_path = self._store_path.with_name(f"{self._store_path.name}.corrupt")
            try:
                self._store_path.replace(backup_path)
            except OSError as move_exc:
                raise StorageWriteError(
                    f"Cannot move unreadable store aside: {self._store_path}"
                ) from move_exc
            logger.warning(
                "unreadable store moved aside before write: path=%s backup=%s reason=%s",
                self._store_path,
                backup_path,
                exc,
            )
            return {}

    def _read_data(self) -> dict[str, Any]:
        if not self._store_path.exists():
            return {}

        try:
            raw = json.loads(self._store_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StorageReadError(f"Invalid store JSON: {self._store_path}") from exc
        except OSError as exc:
            raise StorageReadError(f"Cannot read store: {self._store_path}") from exc

        if not isinstance(raw, dict):
            raise StorageReadError(f"Store file must contain an object: {self._store_path}")

        collections = raw.get("collections", {})
        if not isinstance(collections, dict):
            raise StorageReadError(f"Store collections must be an object: {self._store_path}")
        return dict(collections)

    def _write_data(self, data: dict[str, Any]) -> None:
        payload = {"version": _STORE_VERSION, "collections": data}
        try:
            self._store_path.parent.mkdir(parents=True, exist_ok=True)
            fd, raw_tmp_path = tempfile.mkstemp(
                dir=self._store_path.parent,
                prefix=f"{self._store_path.name}.",
                suffix=".tmp",
            )
            os.close(fd)
        except OSError as exc:
            raise StorageWriteError(f"Cannot write store: {self._store_path}") from exc

        tmp_path = Path(raw_tmp_path)
        try:
            tmp_path.write_text(
                json.dumps(payload, separators=(",", ":"), ensure_ascii=False),
                encoding="utf-8",
            )
            tmp_path.replace(self._store_path)
        except (OSError, TypeError, ValueError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise StorageWriteError(f"Cannot write store: {self._store_path}") from exc


class InMemoryStore:
    """Process-local store; values are JSON round-tripped like the file store."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, items: Mapping[str, Any]) -> None:
        try:
            encoded = {key: json.dumps(value, ensure_ascii=False) for key, value in items.items()}
        except (TypeError, ValueError) as exc:
            raise StorageWriteError("Value is not JSON serializable") from exc
        self._data.update(encoded)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


def load_collection(
    store: KeyValueStore,
    key: str,
    parse: Callable[[Any], T],
    empty: Callable[[], T],
    warnings: list[str] | None = None,
) -> T:
    """Read and parse one collection, degrading to ``empty()`` on failure.

    Absent keys are an empty collection. Unreadable stores and values that fail
    ``parse`` are logged, appended to ``warnings`` and also treated as empty.
    """

    try:
        raw = store.get(key)
    except StorageReadError as exc:
        _degrade(key, str(exc), warnings)
        return empty()

    if raw is None:
        return empty()

    try:
        return parse(raw)
    except (TypeError, ValueError) as exc:
        _degrade(key, f"Invalid data for '{key}': {exc}", warnings)
        return empty()


def _degrade(key: str, message: str, warnings: list[str] | None) -> None:
    logger.warning("storage read degraded to empty collection: key=%s reason=%s", key, message)
    if warnings is not None:
        warnings.append(message)
