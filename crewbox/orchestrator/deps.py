"""FastAPI dependency injection for the orchestrator services.

Usage in route handlers::

    @router.post("/things")
    async def create_thing(workspaces: Workspaces, body: ThingCreate) -> Thing:
        ...

Every dependency resolves from the ``Services`` object the lifespan stores
on ``app.state``; it raises HTTP 503 if the app has not finished starting.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from crewbox.orchestrator.execution.controller import SandboxController
from crewbox.orchestrator.execution.coordinator import ProjectCoordinator
from crewbox.orchestrator.managers.templates import TemplateCatalog
from crewbox.orchestrator.managers.tools import ToolCatalog
from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry
from crewbox.orchestrator.services import Services


def get_services(request: Request) -> Services:
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator services are not initialised.",
        )
    return services


def get_workspaces(request: Request) -> WorkspaceRegistry:
    return get_services(request).workspaces


def get_templates(request: Request) -> TemplateCatalog:
    return get_services(request).templates


def get_tools(request: Request) -> ToolCatalog:
    return get_services(request).tools


def get_coordinator(request: Request) -> ProjectCoordinator:
    return get_services(request).coordinator


def get_controller(request: Request) -> SandboxController:
    return get_services(request).controller


# -- Annotated type aliases for concise route signatures ---------------------

Workspaces = Annotated[WorkspaceRegistry, Depends(get_workspaces)]
"""Annotated dependency: the workspace registry."""

Templates = Annotated[TemplateCatalog, Depends(get_templates)]
Tools = Annotated[ToolCatalog, Depends(get_tools)]

Coordinator = Annotated[ProjectCoordinator, Depends(get_coordinator)]
"""Annotated dependency: the project coordinator (project store via ``.projects``)."""

Controller = Annotated[SandboxController, Depends(get_controller)]
