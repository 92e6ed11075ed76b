"""Unit tests for the template and custom tool catalogs."""

from __future__ import annotations

import pytest

from crewbox.orchestrator.errors import CustomToolNotFoundError, TemplateNotFoundError
from crewbox.orchestrator.managers.templates import TemplateCatalog
from crewbox.orchestrator.managers.tools import ToolCatalog, script_command, script_path
from crewbox.orchestrator.models.enums import ToolRuntime
from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

RECIPE = "FROM python:3.12-slim\nWORKDIR /workspace\n"


@pytest.fixture
def tools(store, clock) -> ToolCatalog:
    return ToolCatalog(store, clock=clock)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


async def test_template_crud(templates: TemplateCatalog, clock) -> None:
    template = await templates.create("python", RECIPE, description="Python 3.12", test_command="python3 -V")
    assert template.template_id.startswith("tpl-")
    assert templates.list() == [template]
    assert templates.find_by_name("python") == template
    assert templates.find_by_name("node") is None

    clock.advance(5)
    updated = await templates.update(template.template_id, {"description": "Python, slim"})
    assert updated.description == "Python, slim"
    assert updated.recipe == RECIPE
    assert updated.last_used_at > template.last_used_at

    await templates.delete(template.template_id)
    assert templates.list() == []
    with pytest.raises(TemplateNotFoundError):
        await templates.get(template.template_id)


async def test_template_update_rejects_unknown_fields(templates: TemplateCatalog) -> None:
    template = await templates.create("python", RECIPE)
    with pytest.raises(ValueError, match="template_id"):
        await templates.update(template.template_id, {"template_id": "tpl-other"})


async def test_template_delete_unknown(templates: TemplateCatalog) -> None:
    with pytest.raises(TemplateNotFoundError):
        await templates.delete("tpl-missing")


async def test_template_from_workspace_is_a_snapshot(
    templates: TemplateCatalog,
    workspaces: WorkspaceRegistry,
) -> None:
    ws = await workspaces.create_from_recipe("box", RECIPE)
    template = await templates.create_from_workspace(ws, "snapshot")
    assert template.recipe == RECIPE

    await workspaces.update_recipe(ws.workspace_id, "FROM alpine:3.19\n")
    assert (await templates.get(template.template_id)).recipe == RECIPE

    # Deleting the template leaves the workspace alone.
    await templates.delete(template.template_id)
    assert workspaces.require(ws.workspace_id).is_live


async def test_templates_survive_reload(templates: TemplateCatalog, store, clock) -> None:
    template = await templates.create("python", RECIPE)

    reloaded = TemplateCatalog(store, clock=clock)
    await reloaded.load()
    assert [t.template_id for t in reloaded.list()] == [template.template_id]


# ---------------------------------------------------------------------------
# Custom tools
# ---------------------------------------------------------------------------


async def test_tool_crud(tools: ToolCatalog) -> None:
    tool = await tools.create("hello", "echo hello", description="Says hello")
    assert tool.tool_id.startswith("tool-")
    assert tool.runtime == ToolRuntime.SHELL
    assert tools.get(tool.tool_id) == tool

    updated = await tools.update(tool.tool_id, {"script": "print('hello')", "runtime": "python"})
    assert updated.runtime == ToolRuntime.PYTHON
    assert updated.name == "hello"

    await tools.delete(tool.tool_id)
    assert tools.list() == []
    with pytest.raises(CustomToolNotFoundError):
        tools.get(tool.tool_id)


async def test_tool_update_validates(tools: ToolCatalog) -> None:
    tool = await tools.create("hello", "echo hello")
    with pytest.raises(ValueError):
        await tools.update(tool.tool_id, {"runtime": "ruby"})
    with pytest.raises(ValueError, match="created_at"):
        await tools.update(tool.tool_id, {"created_at": None})


@pytest.mark.parametrize(
    ("runtime", "command"),
    [
        (ToolRuntime.SHELL, "sh .crewbox/tools/{id}.sh"),
        (ToolRuntime.PYTHON, "python3 .crewbox/tools/{id}.py"),
        (ToolRuntime.NODE, "node .crewbox/tools/{id}.js"),
    ],
)
async def test_script_command_per_runtime(tools: ToolCatalog, runtime: ToolRuntime, command: str) -> None:
    tool = await tools.create("t", "x", runtime=runtime)
    assert script_command(tool) == command.format(id=tool.tool_id)
    assert script_path(tool).startswith(".crewbox/tools/")


async def test_tool_run_in_workspace(tools: ToolCatalog, workspaces: WorkspaceRegistry, driver) -> None:
    ws = await workspaces.create_from_recipe("box", RECIPE)
    tool = await tools.create("greet", "echo hello\necho world\n")

    result = await tools.run(tool.tool_id, ws.workspace_id, workspaces)

    assert result.ok
    assert result.stdout == "hello\nworld\n"
    assert driver.volumes[ws.volume_name][f"/workspace/{script_path(tool)}"] == tool.script


async def test_tool_run_reports_script_failure(tools: ToolCatalog, workspaces: WorkspaceRegistry) -> None:
    ws = await workspaces.create_from_recipe("box", RECIPE)
    tool = await tools.create("broken", "echo start\nexit 4\necho never\n")

    result = await tools.run(tool.tool_id, ws.workspace_id, workspaces)

    assert result.code == 4
    assert result.stdout == "start\n"


async def test_tool_run_unknown(tools: ToolCatalog, workspaces: WorkspaceRegistry) -> None:
    with pytest.raises(CustomToolNotFoundError):
        await tools.run("tool-missing", "ws-anything", workspaces)
