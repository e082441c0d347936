from __future__ import annotations

import copy
import json
import os
import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Protocol

from .config import REGISTRY_KEY
from .exceptions import StorageError
from .logger import setup_logger

logger = setup_logger("face_doorlock.storage")


class RegistryStorage(Protocol):
    def load(self) -> List[dict[str, Any]]:
        ...

    def save(self, records: List[dict[str, Any]]) -> None:
        ...


def _parse_records(raw: str, source: str) -> List[dict[str, Any]]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Registry payload in %s is not valid JSON; treating as empty.", source)
        return []
    if not isinstance(payload, list):
        logger.warning("Registry payload in %s is not a list; treating as empty.", source)
        return []
    return [item for item in payload if isinstance(item, dict)]


class InMemoryStorage:
    def __init__(self, records: List[dict[str, Any]] | None = None):
        self._records: List[dict[str, Any]] = copy.deepcopy(records or [])
        self.save_count = 0

    def load(self) -> List[dict[str, Any]]:
        return copy.deepcopy(self._records)

    def save(self, records: List[dict[str, Any]]) -> None:
        self._records = copy.deepcopy(records)
        self.save_count += 1


class JsonFileStorage:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> List[dict[str, Any]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to read registry file {self.path}: {exc}") from exc
        return _parse_records(raw, str(self.path))

    def save(self, records: List[dict[str, Any]]) -> None:
        body = json.dumps(records, indent=2)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise StorageError(f"Failed to write registry file {self.path}: {exc}") from exc


class SqliteStorage:
    """Single-key store: the whole registry lives in one ``kv_store`` row."""

    def __init__(self, db_path: Path, key: str = REGISTRY_KEY):
        self.db_path = Path(db_path)
        self.key = key
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to initialize registry database: {exc}") from exc

    def load(self) -> List[dict[str, Any]]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (self.key,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to load registry: {exc}") from exc

        if row is None:
            return []
        return _parse_records(row["value"], f"{self.db_path}:{self.key}")

    def save(self, records: List[dict[str, Any]]) -> None:
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (self.key, json.dumps(records, separators=(",", ":")), now),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save registry: {exc}") from exc


def create_storage(backend: str, path: Path) -> RegistryStorage:
    backend = backend.strip().lower()
    if backend == "sqlite":
        return SqliteStorage(path)
    if backend == "json":
        return JsonFileStorage(path)
    if backend == "memory":
        return InMemoryStorage()
    raise StorageError(f"Unknown registry backend '{backend}'. Use sqlite, json or memory.")
