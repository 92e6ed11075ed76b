"""Template catalog endpoints (RPC-style)."""

from __future__ import annotations

from fastapi import APIRouter, status

from crewbox.orchestrator.deps import Templates, Workspaces
from crewbox.orchestrator.models.api import TemplateCreate, TemplateFromWorkspace, TemplateUpdate
from crewbox.orchestrator.models.catalog import Template

router = APIRouter(prefix="/templates", tags=["templates"])


@router.post("/create", response_model=Template, status_code=status.HTTP_201_CREATED)
async def create_template(body: TemplateCreate, templates: Templates) -> Template:
    return await templates.create(
        body.name,
        body.recipe,
        description=body.description,
        test_command=body.test_command,
    )


@router.post("/from-workspace", response_model=Template, status_code=status.HTTP_201_CREATED)
async def save_workspace_as_template(
    body: TemplateFromWorkspace,
    templates: Templates,
    workspaces: Workspaces,
) -> Template:
    """Snapshot a workspace's current recipe."""
    workspace = workspaces.require(body.workspace_id)
    return await templates.create_from_workspace(
        workspace,
        body.name,
        description=body.description,
        test_command=body.test_command,
    )


@router.get("/list", response_model=list[Template])
async def list_templates(templates: Templates) -> list[Template]:
    return templates.list()


@router.get("/{template_id}/get", response_model=Template)
async def get_template(template_id: str, templates: Templates) -> Template:
    return await templates.get(template_id)


@router.post("/{template_id}/update", response_model=Template)
async def update_template(template_id: str, body: TemplateUpdate, templates: Templates) -> Template:
    """Partially update a template."""
    return await templates.update(template_id, body.model_dump(exclude_unset=True))


@router.post("/{template_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(template_id: str, templates: Templates) -> None:
    """Delete a template.  Workspaces built from it are unaffected."""
    await templates.delete(template_id)
