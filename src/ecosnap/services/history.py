"""Classification history: pure collection updates plus key-value persistence.

The orchestrator owns the authoritative list; this module only computes the
next list and mirrors it to a ``KeyValueStore`` under a single key.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from ecosnap.errors import PersistenceCorruptionError
from ecosnap.models import ClassificationRecord

logger = logging.getLogger(__name__)

HISTORY_KEY = "ecoSnapHistory"

_RECORDS = TypeAdapter(list[ClassificationRecord])


# ---------------------------------------------------------------------------
# Key-value persistence
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Protocol for durable single-key string storage."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileKeyValueStore:
    """Stores all keys in one JSON object file, replaced atomically on every write."""

    def __init__(self, path: Path) -> None:
        self.path = path

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise PersistenceCorruptionError(f"{self.path} does not hold a JSON object")
        return data

    def _get(self, key: str) -> str | None:
        try:
            value = self._read_all().get(key)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PersistenceCorruptionError(f"{self.path} is not valid JSON") from exc
        except OSError as exc:
            raise PersistenceCorruptionError(f"{self.path} cannot be read: {exc}") from exc
        return value if isinstance(value, str) else None

    def _set(self, key: str, value: str) -> None:
        try:
            data = self._read_all()
        except (json.JSONDecodeError, UnicodeDecodeError, PersistenceCorruptionError):
            logger.warning("Overwriting unreadable store file %s", self.path)
            data = {}
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


# ---------------------------------------------------------------------------
# History store
# ---------------------------------------------------------------------------


class HistoryStore:
    """Synchronization boundary between the in-memory history and persistence."""

    def __init__(self, backend: KeyValueStore, limit: int = 100, key: str = HISTORY_KEY) -> None:
        self._backend = backend
        self._limit = limit
        self._key = key

    def append(self, collection: list[ClassificationRecord], record: ClassificationRecord) -> list[ClassificationRecord]:
        """Upsert ``record`` at the front, dropping any entry with the same id."""
        remaining = [item for item in collection if item.id != record.id]
        return [record, *remaining][: self._limit]

    @staticmethod
    def remove(collection: list[ClassificationRecord], record_id: str) -> list[ClassificationRecord]:
        return [item for item in collection if item.id != record_id]

    @staticmethod
    def clear() -> list[ClassificationRecord]:
        return []

    async def load(self) -> list[ClassificationRecord]:
        """Read the stored history; missing or corrupt data yields an empty list."""
        try:
            raw = await self._backend.get(self._key)
            if raw is None:
                return []
            return self.decode(raw)
        except PersistenceCorruptionError as exc:
            logger.warning("Discarding unreadable history: %s", exc)
            return []

    async def persist(self, collection: list[ClassificationRecord]) -> None:
        try:
            await self._backend.set(self._key, self.encode(collection))
        except OSError:
            logger.exception("Error saving history to %s", self._key)

    @staticmethod
    def encode(collection: list[ClassificationRecord]) -> str:
        return _RECORDS.dump_json(collection, by_alias=True, exclude_none=True).decode("utf-8")

    @staticmethod
    def decode(raw: str) -> list[ClassificationRecord]:
        """Parse a stored blob.

        Raises:
            PersistenceCorruptionError: If the blob is not a valid list of records.
        """
        try:
            return _RECORDS.validate_json(raw)
        except ValidationError as exc:
            raise PersistenceCorruptionError(f"stored history is invalid ({exc.error_count()} errors)") from exc
