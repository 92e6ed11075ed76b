"""Custom tool catalog endpoints (RPC-style)."""

from __future__ import annotations

from fastapi import APIRouter, status

from crewbox.orchestrator.deps import Tools, Workspaces
from crewbox.orchestrator.models.api import ToolCreate, ToolRun, ToolUpdate
from crewbox.orchestrator.models.catalog import CustomTool
from crewbox.orchestrator.models.workspace import ExecResult

router = APIRouter(prefix="/tools", tags=["tools"])


@router.post("/create", response_model=CustomTool, status_code=status.HTTP_201_CREATED)
async def create_tool(body: ToolCreate, tools: Tools) -> CustomTool:
    return await tools.create(body.name, body.script, description=body.description, runtime=body.runtime)


@router.get("/list", response_model=list[CustomTool])
async def list_tools(tools: Tools) -> list[CustomTool]:
    return tools.list()


@router.get("/{tool_id}/get", response_model=CustomTool)
async def get_tool(tool_id: str, tools: Tools) -> CustomTool:
    return tools.get(tool_id)


@router.post("/{tool_id}/update", response_model=CustomTool)
async def update_tool(tool_id: str, body: ToolUpdate, tools: Tools) -> CustomTool:
    return await tools.update(tool_id, body.model_dump(exclude_unset=True))


@router.post("/{tool_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tool(tool_id: str, tools: Tools) -> None:
    await tools.delete(tool_id)


@router.post("/{tool_id}/run", response_model=ExecResult)
async def run_tool(tool_id: str, body: ToolRun, tools: Tools, workspaces: Workspaces) -> ExecResult:
    """Execute the tool's script inside a workspace."""
    return await tools.run(tool_id, body.workspace_id, workspaces)
