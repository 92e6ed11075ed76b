"""Shared test fixtures.

Unit tests run against an in-memory record store, a fake container driver
and scripted language models, so they need neither Docker nor provider
credentials.  Tests that drive a real container engine are marked with
``@pytest.mark.integration`` and skip when the ``docker`` binary is absent.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterator

import pytest

from crewbox.orchestrator.settings import _get_settings_cached


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Point the data root at a per-test directory and keep service state in memory."""
    monkeypatch.setenv("CREW_DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("CREW_PERSIST", "false")
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()


@pytest.fixture(scope="session")
def docker_bin() -> str:
    """Path of a real docker CLI; skips the test when none is installed."""
    found = shutil.which("docker")
    if found is None:
        pytest.skip("docker is not available")
    return found
