"""Unit tests for the sandbox control tools and the controller agent that drives them."""

from __future__ import annotations

import pytest
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from crewbox.orchestrator.execution.completion import CompletionEngine, Tool
from crewbox.orchestrator.execution.controller import SandboxController
from crewbox.orchestrator.execution.tools import sandbox_control_tools
from crewbox.orchestrator.managers.templates import TemplateCatalog
from crewbox.orchestrator.managers.tools import ToolCatalog
from crewbox.orchestrator.models.enums import WorkspaceStatus
from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

RECIPE = "FROM alpine:3.19\nWORKDIR /workspace\n"


@pytest.fixture
def tools(workspaces: WorkspaceRegistry, templates: TemplateCatalog, store, clock) -> dict[str, Tool]:
    return {t.name: t for t in sandbox_control_tools(workspaces, templates, ToolCatalog(store, clock=clock))}


def test_tool_names(tools: dict[str, Tool]) -> None:
    assert sorted(tools) == [
        "dockerfile_build",
        "dockerfile_test",
        "dockerfile_write",
        "template_delete",
        "template_list",
        "template_save",
        "tool_create",
        "tool_delete",
        "tool_list",
        "tool_run",
        "workspace_create",
        "workspace_destroy",
        "workspace_list",
    ]


async def test_workspace_and_recipe_tools(tools: dict[str, Tool], workspaces: WorkspaceRegistry) -> None:
    assert await tools["workspace_list"].invoke({}) == "No workspaces."

    created = await tools["workspace_create"].invoke({"name": "ctl", "recipe": RECIPE})
    (ws,) = workspaces.list()
    assert created == f"Workspace {ws.workspace_id} (ctl) is running."
    assert f"- {ws.workspace_id}: ctl [running]" in await tools["workspace_list"].invoke(None)

    ref = {"workspace_id": ws.workspace_id}
    await tools["dockerfile_write"].invoke({**ref, "recipe": RECIPE + "RUN false\n"})
    assert workspaces.require(ws.workspace_id).status == WorkspaceStatus.RUNNING
    assert (await tools["dockerfile_build"].invoke(ref)).startswith("Rebuild FAILED.")

    await tools["dockerfile_write"].invoke({**ref, "recipe": RECIPE})
    tested = await tools["dockerfile_test"].invoke({**ref, "command": "echo ok"})
    assert tested == "Build succeeded. Test PASSED.\nok\n"

    destroyed = await tools["workspace_destroy"].invoke({**ref, "keep_volume": True})
    assert destroyed == f"Workspace {ws.workspace_id} destroyed (volume kept)."


async def test_workspace_create_reports_build_failure(tools: dict[str, Tool]) -> None:
    result = await tools["workspace_create"].invoke({"name": "bad", "recipe": "RUN true\n"})
    assert " failed.\nBuild log:\n" in result
    assert "no FROM instruction" in result


async def test_template_tools(tools: dict[str, Tool], workspaces: WorkspaceRegistry) -> None:
    ws = await workspaces.create_from_recipe("base", RECIPE)

    saved = await tools["template_save"].invoke(
        {"workspace_id": ws.workspace_id, "name": "alpine", "description": "Small base"}
    )
    assert saved.startswith("Saved template ")
    listing = await tools["template_list"].invoke({})
    assert "alpine -- Small base" in listing

    template_id = listing.split(":")[0].removeprefix("- ")
    from_template = await tools["workspace_create"].invoke({"name": "copy", "template_id": template_id})
    assert from_template.endswith("(copy) is running.")

    assert await tools["template_delete"].invoke({"template_id": template_id}) == f"Template {template_id} deleted."
    assert await tools["template_list"].invoke({}) == "No templates."


async def test_custom_tool_tools(tools: dict[str, Tool], workspaces: WorkspaceRegistry) -> None:
    ws = await workspaces.create_from_recipe("runner", RECIPE)

    created = await tools["tool_create"].invoke({"name": "greet", "script": "echo hello\n"})
    assert created.endswith("(greet, shell).")
    listing = await tools["tool_list"].invoke({})
    assert "greet [shell]" in listing

    tool_id = listing.split(":")[0].removeprefix("- ")
    assert await tools["tool_run"].invoke({"tool_id": tool_id, "workspace_id": ws.workspace_id}) == "hello\n"

    await tools["tool_delete"].invoke({"tool_id": tool_id})
    assert await tools["tool_list"].invoke({}) == "No custom tools."


async def test_controller_conversation_sees_errors(tools: dict[str, Tool]) -> None:
    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        last = messages[-1]
        assert isinstance(last, ModelRequest)
        returns = [p for p in last.parts if isinstance(p, ToolReturnPart)]
        if returns:
            return ModelResponse(parts=[TextPart(content=returns[0].content)])
        return ModelResponse(
            parts=[ToolCallPart(tool_name="workspace_destroy", args='{"workspace_id": "ws-nope"}', tool_call_id="c1")]
        )

    prompt = [ModelRequest(parts=[UserPromptPart(content="Clean up ws-nope.")])]
    result = await CompletionEngine(FunctionModel(model)).complete(prompt, tools=list(tools.values()))

    assert result.text == "Error: Workspace 'ws-nope' not found"
    assert result.tool_calls[0].is_error


def _controller_model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
    """Creates a workspace on the first turn and reports the history length on the next."""
    assert len(info.function_tools) == 13
    last = messages[-1]
    assert isinstance(last, ModelRequest)
    returns = [p for p in last.parts if isinstance(p, ToolReturnPart)]
    if returns:
        return ModelResponse(parts=[TextPart(content=f"Done. {returns[0].content}")])
    (prompt,) = [p for p in last.parts if isinstance(p, UserPromptPart)]
    if prompt.content == "What did you do?":
        requests = [m for m in messages if isinstance(m, ModelRequest)]
        system = [p for m in requests for p in m.parts if isinstance(p, SystemPromptPart)]
        return ModelResponse(parts=[TextPart(content=f"{len(messages)} messages, {len(system)} system prompt")])
    args = '{"name": "ctl", "recipe": "FROM alpine:3.19\\nWORKDIR /workspace\\n"}'
    return ModelResponse(parts=[ToolCallPart(tool_name="workspace_create", args=args, tool_call_id="c1")])


async def test_sandbox_controller_continues_from_history(
    workspaces: WorkspaceRegistry, templates: TemplateCatalog, store, clock
) -> None:
    controller = SandboxController(
        CompletionEngine(FunctionModel(_controller_model)), workspaces, templates, ToolCatalog(store, clock=clock)
    )

    first = await controller.chat("Give me an alpine box.")
    (ws,) = workspaces.list()
    assert first.text == f"Done. Workspace {ws.workspace_id} (ctl) is running."
    assert [c.tool_name for c in first.tool_calls] == ["workspace_create"]
    assert not first.tool_calls[0].is_error
    assert first.rounds == 2
    assert len(first.history) == 4

    second = await controller.chat("What did you do?", first.history)
    assert second.text == "5 messages, 1 system prompt"
    assert second.tool_calls == []
    assert len(second.history) == 6


async def test_sandbox_controller_rejects_malformed_history(
    workspaces: WorkspaceRegistry, templates: TemplateCatalog, store, clock
) -> None:
    controller = SandboxController(
        CompletionEngine(FunctionModel(_controller_model)), workspaces, templates, ToolCatalog(store, clock=clock)
    )
    with pytest.raises(ValueError):
        await controller.chat("Hello", [{"kind": "nonsense"}])
