"""Service configuration loaded from CREW_* environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class CrewSettings(BaseSettings):
    """Crewbox orchestrator settings.

    All fields are read from environment variables with the ``CREW_`` prefix.
    For example, ``CREW_MAX_RUNNING_WORKSPACES=3`` maps to
    ``max_running_workspaces``.

    LLM provider keys (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...) are **not**
    managed here -- they are read directly by pydantic-ai when the model
    named by ``model`` is first used.
    """

    model_config = SettingsConfigDict(
        env_prefix="CREW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Emit one JSON object per log line instead of the coloured console format."""

    # -- Data storage ----------------------------------------------------------
    data_root: str = "./data"
    """Unified root directory for persisted records (workspaces, catalogs, projects)."""

    data_prefix: str | None = None
    """Optional namespace prefix inserted into all data paths.

    When set, all paths become ``{data_root}/{data_prefix}/...``.
    """

    persist: bool = True
    """Write records to ``data_root``.  When false, all state is in-memory only."""

    # -- Server ----------------------------------------------------------------
    host: str = "127.0.0.1"
    port: int = 8000
    graceful_shutdown_timeout: int = 600
    """Seconds to wait for in-flight task runs to finish during shutdown."""

    # -- Language model --------------------------------------------------------
    model: str = "openai:gpt-4o-mini"
    """Provider-qualified pydantic-ai model name used for planning and task runs."""

    task_max_iterations: int = 10
    """Upper bound on tool-calling rounds for a single task run."""

    # -- Container engine ------------------------------------------------------
    docker_bin: str = "docker"
    name_prefix: str = "crewbox"
    """Prefix for container, volume and image names created by the registry."""

    helper_image: str = "alpine:latest"
    """Image used for the throwaway container that copies a volume into a build context."""

    workdir: str = "/workspace"
    """Mount point of the workspace volume and working directory of every exec."""

    container_memory: str = "512m"
    container_cpus: str = "1.0"
    exec_timeout: float = 60.0
    build_timeout: float = 300.0
    max_output_bytes: int = 10 * 1024 * 1024

    # -- Capacity --------------------------------------------------------------
    max_running_workspaces: int = 5
    max_total_workspaces: int = 20
    idle_ttl: float = 2 * 60 * 60
    """Seconds a running workspace may sit unused before it is stopped."""


def get_settings() -> CrewSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> CrewSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return CrewSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
