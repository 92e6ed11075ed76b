"""Local filesystem record store.

Stores records as JSON files under a unified data root with optional
namespace prefix::

    {data_root}/{prefix}/{collection}/{record_id}.json

When prefix is None, the path collapses to::

    {data_root}/{collection}/{record_id}.json

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.

Writes are atomic: data is written to a temporary file in the same directory,
then renamed to the target path.  This prevents corrupt reads if the process
crashes mid-write.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger
from pydantic import BaseModel, ValidationError

from crewbox.orchestrator.store.base import RecordT


class LocalRecordStore:
    """Local filesystem implementation of the RecordStore protocol."""

    def __init__(self, data_root: str | Path, prefix: str | None = None) -> None:
        base = Path(data_root)
        if prefix:
            base = base / prefix
        self._base = base

    def _collection_dir(self, collection: str) -> Path:
        return self._base / collection

    def _record_path(self, collection: str, record_id: str) -> Path:
        return self._collection_dir(collection) / f"{record_id}.json"

    # -- Write -----------------------------------------------------------------

    async def save(self, collection: str, record_id: str, record: BaseModel) -> None:
        data = record.model_dump_json(indent=2)
        await to_thread.run_sync(partial(_atomic_write, self._record_path(collection, record_id), data))

    # -- Read ------------------------------------------------------------------

    async def load_all(self, collection: str, model: type[RecordT]) -> list[RecordT]:
        raw_records = await to_thread.run_sync(partial(_read_dir, self._collection_dir(collection)))
        records: list[RecordT] = []
        for name, raw in raw_records:
            try:
                records.append(model.model_validate_json(raw))
            except ValidationError:
                # A record written by an incompatible version; leave it on disk.
                logger.warning("Store: skipping unreadable record {}/{}", collection, name)
        return records

    # -- Utilities -------------------------------------------------------------

    async def delete(self, collection: str, record_id: str) -> None:
        await to_thread.run_sync(partial(_unlink, self._record_path(collection, record_id)))


class MemoryRecordStore:
    """In-process RecordStore used when persistence is disabled (and in tests)."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}

    async def save(self, collection: str, record_id: str, record: BaseModel) -> None:
        self._data.setdefault(collection, {})[record_id] = record.model_dump_json()

    async def load_all(self, collection: str, model: type[RecordT]) -> list[RecordT]:
        return [model.model_validate_json(raw) for raw in self._data.get(collection, {}).values()]

    async def delete(self, collection: str, record_id: str) -> None:
        self._data.get(collection, {}).pop(record_id, None)


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename.

    Ensures readers never see a partially-written file.  The temp file is
    created in the same directory so ``os.rename`` is atomic on POSIX.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.rename(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_dir(directory: Path) -> list[tuple[str, str]]:
    """Read every ``*.json`` file in a directory, sorted by name."""
    if not directory.is_dir():
        return []
    return [(p.stem, p.read_text(encoding="utf-8")) for p in sorted(directory.glob("*.json"))]


def _unlink(path: Path) -> None:
    """Remove a file.  No-op if it doesn't exist."""
    path.unlink(missing_ok=True)
