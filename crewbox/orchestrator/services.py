"""Service graph construction.

``create_services`` builds every long-lived object the app and the CLI need
from one ``CrewSettings``.  Collaborators can be injected (tests pass a fake
container driver, a scripted model and an in-memory store).
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from pydantic_ai.models import Model

from crewbox.orchestrator.execution.completion import CompletionEngine
from crewbox.orchestrator.execution.controller import SandboxController
from crewbox.orchestrator.execution.coordinator import ProjectCoordinator
from crewbox.orchestrator.managers.projects import ProjectStore
from crewbox.orchestrator.managers.templates import TemplateCatalog
from crewbox.orchestrator.managers.tools import ToolCatalog
from crewbox.orchestrator.registry import RunRegistry
from crewbox.orchestrator.sandbox.driver import ContainerDriver
from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry
from crewbox.orchestrator.settings import CrewSettings
from crewbox.orchestrator.store.base import RecordStore
from crewbox.orchestrator.store.local import LocalRecordStore, MemoryRecordStore


@dataclass
class Services:
    settings: CrewSettings
    store: RecordStore
    driver: ContainerDriver
    templates: TemplateCatalog
    tools: ToolCatalog
    workspaces: WorkspaceRegistry
    projects: ProjectStore
    runs: RunRegistry
    engine: CompletionEngine
    coordinator: ProjectCoordinator
    controller: SandboxController

    async def load(self) -> None:
        """Read persisted state back.  Templates first: workspaces resolve against them."""
        await self.templates.load()
        await self.tools.load()
        await self.workspaces.load()
        await self.projects.load()


def create_record_store(settings: CrewSettings) -> RecordStore:
    if not settings.persist:
        logger.warning("CREW_PERSIST is off -- state lives in memory only")
        return MemoryRecordStore()
    return LocalRecordStore(settings.data_root, prefix=settings.data_prefix)


def create_services(
    settings: CrewSettings,
    *,
    driver: ContainerDriver | None = None,
    model: Model | str | None = None,
    store: RecordStore | None = None,
) -> Services:
    store = store if store is not None else create_record_store(settings)
    driver = driver or ContainerDriver.from_settings(settings)

    templates = TemplateCatalog(store)
    tools = ToolCatalog(store)
    workspaces = WorkspaceRegistry(
        driver,
        templates,
        store,
        name_prefix=settings.name_prefix,
        max_running=settings.max_running_workspaces,
        max_total=settings.max_total_workspaces,
        idle_ttl=settings.idle_ttl,
    )
    projects = ProjectStore(store)
    runs = RunRegistry()
    # A model name is resolved by pydantic-ai on first request, so missing
    # provider credentials surface there rather than at startup.
    engine = CompletionEngine(
        model if model is not None else settings.model,
        max_iterations=settings.task_max_iterations,
    )
    coordinator = ProjectCoordinator(
        projects,
        workspaces,
        engine,
        runs,
        max_parallel=settings.max_running_workspaces,
        task_max_iterations=settings.task_max_iterations,
    )
    return Services(
        settings=settings,
        store=store,
        driver=driver,
        templates=templates,
        tools=tools,
        workspaces=workspaces,
        projects=projects,
        runs=runs,
        engine=engine,
        coordinator=coordinator,
        controller=SandboxController(engine, workspaces, templates, tools),
    )
