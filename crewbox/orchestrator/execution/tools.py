"""Model-facing tools.

Two families, both built on the typed ``Tool`` abstraction:

- **workspace tools** (``exec``, ``file_write``, ``file_read``) bound to one
  workspace -- the only tools a task agent gets;
- **sandbox control tools** for a controller agent: workspace lifecycle,
  recipe editing and verification, template and custom tool catalogs.

Executors return plain strings; exceptions they raise are turned into error
results by the completion engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from crewbox.orchestrator.execution.completion import Tool
from crewbox.orchestrator.models.enums import ToolRuntime

if TYPE_CHECKING:
    from crewbox.orchestrator.managers.templates import TemplateCatalog
    from crewbox.orchestrator.managers.tools import ToolCatalog
    from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

# -- Argument models -----------------------------------------------------------


class ExecArgs(BaseModel):
    command: str = Field(description="Shell command, run with sh -c in the workspace directory")


class FileWriteArgs(BaseModel):
    path: str = Field(description="File path relative to the workspace directory")
    content: str = Field(description="Complete file content")


class FileReadArgs(BaseModel):
    path: str = Field(description="File path relative to the workspace directory")


class NoArgs(BaseModel):
    pass


class WorkspaceRef(BaseModel):
    workspace_id: str


class WorkspaceCreateArgs(BaseModel):
    name: str
    recipe: str | None = Field(default=None, description="Dockerfile content; omit to use template_id or a bare image")
    template_id: str | None = None
    network_enabled: bool = False


class WorkspaceDestroyArgs(WorkspaceRef):
    keep_volume: bool = False


class RecipeWriteArgs(WorkspaceRef):
    recipe: str = Field(description="Complete Dockerfile content")


class RecipeTestArgs(WorkspaceRef):
    command: str = Field(description="Verification command run after the rebuild")


class TemplateSaveArgs(WorkspaceRef):
    name: str
    description: str = ""
    test_command: str | None = None


class TemplateRef(BaseModel):
    template_id: str


class CustomToolCreateArgs(BaseModel):
    name: str
    description: str = ""
    script: str
    runtime: ToolRuntime = ToolRuntime.SHELL


class CustomToolRef(BaseModel):
    tool_id: str


class CustomToolRunArgs(CustomToolRef, WorkspaceRef):
    pass


# -- Workspace tools -----------------------------------------------------------


def workspace_tools(workspaces: WorkspaceRegistry, workspace_id: str) -> list[Tool]:
    """The three tools a task agent drives, all bound to *workspace_id*."""

    async def run_exec(args: ExecArgs) -> str:
        result = await workspaces.exec(workspace_id, args.command)
        return result.render()

    async def run_write(args: FileWriteArgs) -> str:
        target = await workspaces.write_file(workspace_id, args.path, args.content)
        return f"Wrote {len(args.content)} characters to {target}"

    async def run_read(args: FileReadArgs) -> str:
        return await workspaces.read_file(workspace_id, args.path)

    return [
        Tool("exec", "Execute a shell command in the workspace and return its output.", ExecArgs, run_exec),
        Tool("file_write", "Create or overwrite a file in the workspace.", FileWriteArgs, run_write),
        Tool("file_read", "Read a file from the workspace.", FileReadArgs, run_read),
    ]


# -- Sandbox control tools -----------------------------------------------------


def sandbox_control_tools(
    workspaces: WorkspaceRegistry,
    templates: TemplateCatalog,
    catalog: ToolCatalog,
) -> list[Tool]:
    """Tools for an agent that manages sandboxes and catalogs itself."""

    async def workspace_create(args: WorkspaceCreateArgs) -> str:
        if args.template_id:
            ws = await workspaces.create_from_template(
                args.name, args.template_id, network_enabled=args.network_enabled
            )
        else:
            ws = await workspaces.create_from_recipe(args.name, args.recipe, network_enabled=args.network_enabled)
        if ws.status != "running":
            return f"Workspace {ws.workspace_id} {ws.status}.\nBuild log:\n{ws.build_log or ''}"
        return f"Workspace {ws.workspace_id} ({ws.name}) is running."

    async def workspace_list(_: NoArgs) -> str:
        items = workspaces.list()
        if not items:
            return "No workspaces."
        return "\n".join(f"- {ws.workspace_id}: {ws.name} [{ws.status}]" for ws in items)

    async def workspace_destroy(args: WorkspaceDestroyArgs) -> str:
        ws = await workspaces.destroy(args.workspace_id, keep_volume=args.keep_volume)
        kept = " (volume kept)" if args.keep_volume else ""
        return f"Workspace {ws.workspace_id} destroyed{kept}."

    async def dockerfile_write(args: RecipeWriteArgs) -> str:
        await workspaces.update_recipe(args.workspace_id, args.recipe)
        return f"Recipe of {args.workspace_id} updated. Rebuild to apply it."

    async def dockerfile_build(args: WorkspaceRef) -> str:
        result = await workspaces.rebuild(args.workspace_id)
        verdict = "succeeded" if result.success else "FAILED"
        return f"Rebuild {verdict}.\n{result.log}"

    async def dockerfile_test(args: RecipeTestArgs) -> str:
        result = await workspaces.test(args.workspace_id, args.command)
        if not result.build_success:
            return f"Build FAILED.\n{result.build_log}"
        verdict = "PASSED" if result.passed else "FAILED"
        return f"Build succeeded. Test {verdict}.\n{result.test.render() if result.test else ''}"

    async def template_save(args: TemplateSaveArgs) -> str:
        ws = workspaces.require(args.workspace_id)
        template = await templates.create_from_workspace(
            ws, args.name, description=args.description, test_command=args.test_command
        )
        return f"Saved template {template.template_id} ({template.name})."

    async def template_list(_: NoArgs) -> str:
        items = templates.list()
        if not items:
            return "No templates."
        return "\n".join(f"- {t.template_id}: {t.name} -- {t.description}" for t in items)

    async def template_delete(args: TemplateRef) -> str:
        await templates.delete(args.template_id)
        return f"Template {args.template_id} deleted."

    async def tool_create(args: CustomToolCreateArgs) -> str:
        tool = await catalog.create(args.name, args.script, description=args.description, runtime=args.runtime)
        return f"Created tool {tool.tool_id} ({tool.name}, {tool.runtime})."

    async def tool_list(_: NoArgs) -> str:
        items = catalog.list()
        if not items:
            return "No custom tools."
        return "\n".join(f"- {t.tool_id}: {t.name} [{t.runtime}] -- {t.description}" for t in items)

    async def tool_run(args: CustomToolRunArgs) -> str:
        result = await catalog.run(args.tool_id, args.workspace_id, workspaces)
        return result.render()

    async def tool_delete(args: CustomToolRef) -> str:
        await catalog.delete(args.tool_id)
        return f"Tool {args.tool_id} deleted."

    return [
        Tool(
            "workspace_create",
            "Create a sandbox workspace from a recipe or template.",
            WorkspaceCreateArgs,
            workspace_create,
        ),
        Tool("workspace_list", "List live workspaces.", NoArgs, workspace_list),
        Tool("workspace_destroy", "Destroy a workspace.", WorkspaceDestroyArgs, workspace_destroy),
        Tool("dockerfile_write", "Replace a workspace's recipe without rebuilding.", RecipeWriteArgs, dockerfile_write),
        Tool("dockerfile_build", "Rebuild a workspace from its recipe, keeping files.", WorkspaceRef, dockerfile_build),
        Tool("dockerfile_test", "Rebuild a workspace, then run a check command.", RecipeTestArgs, dockerfile_test),
        Tool("template_save", "Save a workspace's recipe as a reusable template.", TemplateSaveArgs, template_save),
        Tool("template_list", "List saved templates.", NoArgs, template_list),
        Tool("template_delete", "Delete a template.", TemplateRef, template_delete),
        Tool("tool_create", "Save a reusable script as a custom tool.", CustomToolCreateArgs, tool_create),
        Tool("tool_list", "List custom tools.", NoArgs, tool_list),
        Tool("tool_run", "Run a custom tool inside a workspace.", CustomToolRunArgs, tool_run),
        Tool("tool_delete", "Delete a custom tool.", CustomToolRef, tool_delete),
    ]
