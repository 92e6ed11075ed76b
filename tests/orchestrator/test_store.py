"""Unit tests for the record stores.

No Docker required -- uses a temporary directory.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from crewbox.orchestrator.models.catalog import Template
from crewbox.orchestrator.store.local import LocalRecordStore, MemoryRecordStore

NOW = datetime(2025, 1, 1, tzinfo=UTC)


def _template(template_id: str, name: str = "python") -> Template:
    return Template(
        template_id=template_id,
        name=name,
        recipe="FROM python:3.12-slim\n",
        created_at=NOW,
        last_used_at=NOW,
    )


@pytest.fixture
def store(tmp_path) -> LocalRecordStore:
    return LocalRecordStore(tmp_path)


async def test_save_and_load(store: LocalRecordStore) -> None:
    await store.save("templates", "tpl-1", _template("tpl-1"))

    records = await store.load_all("templates", Template)
    assert [t.template_id for t in records] == ["tpl-1"]
    assert records[0].recipe == "FROM python:3.12-slim\n"


async def test_load_missing_collection(store: LocalRecordStore) -> None:
    assert await store.load_all("nothing-here", Template) == []


async def test_save_replaces(store: LocalRecordStore) -> None:
    await store.save("templates", "tpl-1", _template("tpl-1", name="old"))
    await store.save("templates", "tpl-1", _template("tpl-1", name="new"))

    records = await store.load_all("templates", Template)
    assert len(records) == 1
    assert records[0].name == "new"


async def test_delete(store: LocalRecordStore, tmp_path) -> None:
    await store.save("templates", "tpl-1", _template("tpl-1"))
    await store.delete("templates", "tpl-1")

    assert await store.load_all("templates", Template) == []
    assert not (tmp_path / "templates" / "tpl-1.json").exists()

    # Delete non-existent is a no-op.
    await store.delete("templates", "tpl-1")


async def test_prefix_layout(tmp_path) -> None:
    store = LocalRecordStore(tmp_path, prefix="alice")
    await store.save("templates", "tpl-1", _template("tpl-1"))

    assert (tmp_path / "alice" / "templates" / "tpl-1.json").is_file()
    assert await LocalRecordStore(tmp_path).load_all("templates", Template) == []


async def test_no_temp_files_left(store: LocalRecordStore, tmp_path) -> None:
    await store.save("templates", "tpl-1", _template("tpl-1"))
    leftovers = list((tmp_path / "templates").glob("*.tmp"))
    assert leftovers == []


async def test_unreadable_record_is_skipped(store: LocalRecordStore, tmp_path) -> None:
    """A record that no longer validates is left on disk and ignored."""
    await store.save("templates", "tpl-1", _template("tpl-1"))
    (tmp_path / "templates" / "tpl-bad.json").write_text('{"template_id": "tpl-bad"}', encoding="utf-8")

    records = await store.load_all("templates", Template)
    assert [t.template_id for t in records] == ["tpl-1"]
    assert (tmp_path / "templates" / "tpl-bad.json").exists()


async def test_memory_store_isolates_collections() -> None:
    store = MemoryRecordStore()
    await store.save("templates", "tpl-1", _template("tpl-1"))

    assert len(await store.load_all("templates", Template)) == 1
    assert await store.load_all("tools", Template) == []

    await store.delete("templates", "tpl-1")
    await store.delete("templates", "tpl-1")
    assert await store.load_all("templates", Template) == []
