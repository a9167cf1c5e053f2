"""File-backed persistence collaborator.

Keeps invoice/note records, configuration values and the outbox pending
list as JSON files in the data directory. Every read-modify-write holds a
file lock and writes atomically, so a crash never leaves a half-written
outbox behind.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from filelock import FileLock

from facturador import config as _config

logger = logging.getLogger(__name__)


def record_key(kind: str, record_id: Any) -> str:
    """Invoices and notes are numbered independently, so records key by both."""
    return f"{kind}:{record_id}"


def _backup_corrupt(path: Path) -> Path:
    """Rename a corrupt file to a timestamped backup before it gets overwritten."""
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    backup = path.with_name(f"{path.name}.corrupt.{ts}")
    path.rename(backup)
    logger.warning("Corrupt file backed up: %s -> %s", path, backup)
    return backup


def _load(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text())
    except (json.JSONDecodeError, ValueError):
        _backup_corrupt(path)
        return default


def _save(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n")
    os.replace(tmp, path)


class JsonStore:
    """RecordStore implementation over three JSON files.

    Public methods are coroutines; the blocking file work runs in a worker
    thread so the event loop is never held by disk I/O.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or _config.get_data_dir()

    @property
    def records_path(self) -> Path:
        return self.data_dir / "records.json"

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def pending_path(self) -> Path:
        return self.data_dir / "pending.json"

    @contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(path.with_suffix(".lock")):
            yield

    # --- sync implementations ---

    def _get_config(self, key: str) -> Any:
        with self._locked(self.config_path):
            return _load(self.config_path, {}).get(key)

    def _save_config(self, key: str, value: Any) -> None:
        with self._locked(self.config_path):
            data = _load(self.config_path, {})
            data[key] = value
            _save(self.config_path, data)

    def _get_record(self, kind: str, record_id: Any) -> dict | None:
        with self._locked(self.records_path):
            return _load(self.records_path, {}).get(record_key(kind, record_id))

    def _put_record(self, kind: str, record: dict) -> None:
        with self._locked(self.records_path):
            records = _load(self.records_path, {})
            records[record_key(kind, record["id"])] = record
            _save(self.records_path, records)

    def _update_record(self, kind: str, record_id: Any, patch: dict) -> dict | None:
        with self._locked(self.records_path):
            records = _load(self.records_path, {})
            target = records.get(record_key(kind, record_id))
            if target is None:
                return None
            target.update(patch)
            _save(self.records_path, records)
            return target

    def _get_pending(self) -> list:
        with self._locked(self.pending_path):
            data = _load(self.pending_path, [])
        return data if isinstance(data, list) else []

    def _set_pending(self, entries: list) -> None:
        with self._locked(self.pending_path):
            _save(self.pending_path, entries)

    # --- RecordStore protocol ---

    async def get_config(self, key: str) -> Any:
        return await asyncio.to_thread(self._get_config, key)

    async def save_config(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._save_config, key, value)

    async def get_record(self, kind: str, record_id: Any) -> dict | None:
        return await asyncio.to_thread(self._get_record, kind, record_id)

    async def put_record(self, kind: str, record: dict) -> None:
        await asyncio.to_thread(self._put_record, kind, record)

    async def update_record(self, kind: str, record_id: Any, patch: dict) -> dict | None:
        """Merge *patch* into a stored record. Returns None if the key is unknown."""
        return await asyncio.to_thread(self._update_record, kind, record_id, patch)

    async def get_pending(self) -> list:
        return await asyncio.to_thread(self._get_pending)

    async def set_pending(self, entries: list) -> None:
        await asyncio.to_thread(self._set_pending, entries)
