"""Task execution agent: one task, one team member, one workspace.

Success judgment is a best-effort heuristic, not a guarantee:

1. a run that made no tool calls at all failed, whatever it says;
2. otherwise the run failed if the final text contains an explicit failure
   marker (``error:``, ``failed to``, ``could not``; case-insensitive);
3. otherwise it succeeded.

The task output is the transcript of tool calls with result previews
followed by the model's final summary.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic_ai.messages import ModelRequest, SystemPromptPart, UserPromptPart

from crewbox.orchestrator.execution.prompt import render_system_prompt, render_task_prompt
from crewbox.orchestrator.execution.tools import workspace_tools

if TYPE_CHECKING:
    from crewbox.orchestrator.execution.completion import CompletionEngine, CompletionResult, ToolCallRecord
    from crewbox.orchestrator.models.project import Project, Task, TeamMember
    from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

logger = logging.getLogger(__name__)

FAILURE_MARKERS = ("error:", "failed to", "could not")
NO_TOOLS_MESSAGE = "Agent did not use any tools"

_PREVIEW_CHARS = 500


@dataclass
class TaskOutcome:
    success: bool
    output: str
    tool_calls: int
    rounds: int


def judge_success(result: CompletionResult) -> bool:
    if not result.tool_calls:
        return False
    lowered = result.text.lower()
    return not any(marker in lowered for marker in FAILURE_MARKERS)


def format_transcript(result: CompletionResult) -> str:
    lines = [f"Execution log ({result.rounds} rounds)", ""]
    for i, call in enumerate(result.tool_calls, 1):
        lines.append(f"[{i}] {call.tool_name}({_format_args(call)})")
        lines.append(f"    -> {_preview(call.result)}")
    if result.hit_iteration_cap:
        lines.append("(stopped at the iteration limit)")
    lines += ["", "Summary", result.text.strip() or "(no summary)"]
    return "\n".join(lines)


class TaskAgent:
    def __init__(self, engine: CompletionEngine, workspaces: WorkspaceRegistry, *, max_iterations: int = 10) -> None:
        self._engine = engine
        self._workspaces = workspaces
        self._max_iterations = max_iterations

    async def run(
        self,
        task: Task,
        member: TeamMember,
        project: Project,
        *,
        completed: list[Task] | None = None,
    ) -> TaskOutcome:
        """Drive the completion loop for *task* against the project's workspace."""
        system = render_system_prompt(member, project=project, workdir=self._workspaces.workdir)
        messages = [
            ModelRequest(
                parts=[
                    SystemPromptPart(content=system),
                    UserPromptPart(content=render_task_prompt(task, completed)),
                ]
            )
        ]
        tools = workspace_tools(self._workspaces, project.workspace_id)

        logger.info("Task %s: running as %s in workspace %s", task.task_id, member.member_id, project.workspace_id)
        result = await self._engine.complete(messages, tools=tools, max_iterations=self._max_iterations)

        if not result.tool_calls:
            logger.info("Task %s: no tool calls, marking failed", task.task_id)
            output = f"{NO_TOOLS_MESSAGE}.\n\n{format_transcript(result)}"
            return TaskOutcome(success=False, output=output, tool_calls=0, rounds=result.rounds)

        success = judge_success(result)
        logger.info(
            "Task %s: %s after %d round(s), %d tool call(s)",
            task.task_id,
            "succeeded" if success else "failed",
            result.rounds,
            len(result.tool_calls),
        )
        return TaskOutcome(
            success=success,
            output=format_transcript(result),
            tool_calls=len(result.tool_calls),
            rounds=result.rounds,
        )


def _format_args(call: ToolCallRecord) -> str:
    args = call.args
    if isinstance(args, str):
        try:
            args = json.loads(args) if args else {}
        except json.JSONDecodeError:
            return _preview(args, 120)
    if not isinstance(args, dict):
        return ""
    return ", ".join(f"{k}={_preview(json.dumps(v), 120)}" for k, v in args.items())


def _preview(text: str, limit: int = _PREVIEW_CHARS) -> str:
    flat = text.replace("\n", " ").strip()
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."
