"""Sandbox controller: a conversational agent over the sandbox control tools.

The controller is stateless between turns.  Each reply carries the full
message history in pydantic-ai's JSON form; a client continues the
conversation by sending that history back with its next message.  The
system prompt is only added when the history is empty.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic_ai.messages import ModelMessage, ModelMessagesTypeAdapter, ModelRequest, SystemPromptPart, UserPromptPart

from crewbox.orchestrator.execution.prompt import render_controller_prompt
from crewbox.orchestrator.execution.tools import sandbox_control_tools
from crewbox.orchestrator.models.api import ControllerReply, ControllerToolCall

if TYPE_CHECKING:
    from crewbox.orchestrator.execution.completion import CompletionEngine
    from crewbox.orchestrator.managers.templates import TemplateCatalog
    from crewbox.orchestrator.managers.tools import ToolCatalog
    from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

logger = logging.getLogger(__name__)


class SandboxController:
    def __init__(
        self,
        engine: CompletionEngine,
        workspaces: WorkspaceRegistry,
        templates: TemplateCatalog,
        catalog: ToolCatalog,
    ) -> None:
        self._engine = engine
        self._workspaces = workspaces
        self.tools = sandbox_control_tools(workspaces, templates, catalog)

    async def chat(
        self,
        message: str,
        history: list[dict[str, Any]] | None = None,
        *,
        max_iterations: int | None = None,
    ) -> ControllerReply:
        """Run one user turn.  A malformed *history* raises ``ValueError``."""
        previous: list[ModelMessage] = ModelMessagesTypeAdapter.validate_python(history) if history else []
        parts: list[SystemPromptPart | UserPromptPart] = []
        if not previous:
            parts.append(SystemPromptPart(content=render_controller_prompt(self._workspaces.workdir)))
        parts.append(UserPromptPart(content=message))

        logger.info("Controller: turn with %d prior message(s)", len(previous))
        result = await self._engine.complete(
            [*previous, ModelRequest(parts=parts)],
            tools=self.tools,
            max_iterations=max_iterations,
        )
        logger.info("Controller: answered after %d round(s), %d tool call(s)", result.rounds, len(result.tool_calls))
        return ControllerReply(
            text=result.text,
            tool_calls=[
                ControllerToolCall(tool_name=c.tool_name, result=c.result, is_error=c.is_error)
                for c in result.tool_calls
            ],
            rounds=result.rounds,
            hit_iteration_cap=result.hit_iteration_cap,
            history=ModelMessagesTypeAdapter.dump_python(result.messages, mode="json"),
        )
