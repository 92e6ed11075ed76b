"""Workspace endpoints (RPC-style).

All write operations use POST; reads use GET.  Build and exec failures are
data in the response body, not HTTP errors.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from crewbox.orchestrator.deps import Workspaces
from crewbox.orchestrator.errors import WorkspaceNotFoundError
from crewbox.orchestrator.models.api import (
    ExecRequest,
    FileContent,
    FileWrite,
    RecipeUpdate,
    VerifyRequest,
    WorkspaceCreate,
    WorkspaceDestroy,
)
from crewbox.orchestrator.models.workspace import ExecResult, RebuildResult, Workspace, WorkspaceTestResult

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


@router.post("/create", response_model=Workspace, status_code=status.HTTP_201_CREATED)
async def create_workspace(body: WorkspaceCreate, workspaces: Workspaces) -> Workspace:
    """Create a workspace.  A failed build still returns 201 with status ``failed``."""
    if body.template_id is not None:
        return await workspaces.create_from_template(
            body.name,
            body.template_id,
            network_enabled=body.network_enabled,
            request_id=body.request_id,
        )
    return await workspaces.create_from_recipe(
        body.name,
        body.recipe,
        network_enabled=body.network_enabled,
        request_id=body.request_id,
    )


@router.get("/list", response_model=list[Workspace])
async def list_workspaces(workspaces: Workspaces) -> list[Workspace]:
    """List non-destroyed workspaces, oldest first."""
    return workspaces.list()


@router.get("/{workspace_id}/get", response_model=Workspace)
async def get_workspace(workspace_id: str, workspaces: Workspaces) -> Workspace:
    workspace = await workspaces.get(workspace_id)
    if workspace is None:
        raise WorkspaceNotFoundError(workspace_id)
    return workspace


@router.post("/{workspace_id}/update-recipe", response_model=Workspace)
async def update_recipe(workspace_id: str, body: RecipeUpdate, workspaces: Workspaces) -> Workspace:
    """Replace the recipe without rebuilding."""
    return await workspaces.update_recipe(workspace_id, body.recipe)


@router.post("/{workspace_id}/rebuild", response_model=RebuildResult)
async def rebuild_workspace(workspace_id: str, workspaces: Workspaces) -> RebuildResult:
    return await workspaces.rebuild(workspace_id)


@router.post("/{workspace_id}/test", response_model=WorkspaceTestResult)
async def test_workspace(workspace_id: str, body: VerifyRequest, workspaces: Workspaces) -> WorkspaceTestResult:
    """Rebuild, then run a verification command."""
    return await workspaces.test(workspace_id, body.command)


@router.post("/{workspace_id}/start", response_model=Workspace)
async def start_workspace(workspace_id: str, workspaces: Workspaces) -> Workspace:
    return await workspaces.ensure_running(workspace_id)


@router.post("/{workspace_id}/stop", response_model=Workspace)
async def stop_workspace(workspace_id: str, workspaces: Workspaces) -> Workspace:
    return await workspaces.stop(workspace_id)


@router.post("/{workspace_id}/destroy", response_model=Workspace)
async def destroy_workspace(workspace_id: str, body: WorkspaceDestroy, workspaces: Workspaces) -> Workspace:
    return await workspaces.destroy(workspace_id, keep_volume=body.keep_volume)


# -- Exec & files ------------------------------------------------------------


@router.post("/{workspace_id}/exec", response_model=ExecResult)
async def exec_command(workspace_id: str, body: ExecRequest, workspaces: Workspaces) -> ExecResult:
    return await workspaces.exec(workspace_id, body.command, timeout=body.timeout)


@router.post("/{workspace_id}/files/write", response_model=FileContent)
async def write_file(workspace_id: str, body: FileWrite, workspaces: Workspaces) -> FileContent:
    target = await workspaces.write_file(workspace_id, body.path, body.content)
    return FileContent(path=target, content=body.content)


@router.get("/{workspace_id}/files/read", response_model=FileContent)
async def read_file(workspace_id: str, workspaces: Workspaces, path: str = Query(...)) -> FileContent:
    content = await workspaces.read_file(workspace_id, path)
    return FileContent(path=workspaces.resolve_path(path), content=content)
