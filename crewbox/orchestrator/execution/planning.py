"""LLM-driven planning: team synthesis and sprint task-graph synthesis.

Both steps ask the model for JSON, pull the first JSON array / object out of
whatever text comes back and validate it.  Anything that does not parse, or
a task graph that does not hold together, raises ``PlanParseError`` carrying
the raw response.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError
from pydantic_ai.messages import ModelRequest, UserPromptPart

from crewbox.orchestrator.errors import PlanParseError
from crewbox.orchestrator.execution.prompt import render_sprint_planning, render_team_analysis
from crewbox.orchestrator.execution.scheduler import validate_task_graph
from crewbox.orchestrator.models.project import Project, Sprint, Task, TeamMember
from crewbox.orchestrator.utils import new_id

if TYPE_CHECKING:
    from crewbox.orchestrator.execution.completion import CompletionEngine

logger = logging.getLogger(__name__)

_ARRAY = re.compile(r"\[[\s\S]*\]")
_OBJECT = re.compile(r"\{[\s\S]*\}")
_SLUG = re.compile(r"[^a-z0-9]+")


class MemberDraft(BaseModel):
    role: str
    name: str
    system_prompt: str = Field(validation_alias=AliasChoices("system_prompt", "systemPrompt"))
    capabilities: list[str] = Field(default_factory=list)


class TaskDraft(BaseModel):
    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "task_id", "taskId"))
    title: str
    description: str = ""
    assigned_to: str = Field(validation_alias=AliasChoices("assigned_to", "assignedTo", "assignee"))
    dependencies: list[str] = Field(default_factory=list)


# -- Parsing -------------------------------------------------------------------


def parse_team(raw: str) -> list[TeamMember]:
    payload = _extract(raw, _ARRAY)
    try:
        drafts = [MemberDraft.model_validate(item) for item in payload]
    except ValidationError as exc:
        msg = f"Team response has an unexpected shape: {exc}"
        raise PlanParseError(msg, raw) from exc
    if not drafts:
        msg = "Team response contains no members"
        raise PlanParseError(msg, raw)
    return [
        TeamMember(
            member_id=new_id(f"member-{role_slug(d.role)}"),
            role=d.role,
            name=d.name,
            system_prompt=d.system_prompt,
            capabilities=d.capabilities,
        )
        for d in drafts
    ]


def parse_sprint(raw: str, goal: str, team: list[TeamMember]) -> Sprint:
    """Build a ``planning`` sprint from a planning response, validating the task graph."""
    payload = _extract(raw, _OBJECT)
    items = payload.get("tasks") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        msg = "Sprint response has no 'tasks' list"
        raise PlanParseError(msg, raw)
    try:
        drafts = [TaskDraft.model_validate(item) for item in items]
    except ValidationError as exc:
        msg = f"Sprint response has an unexpected shape: {exc}"
        raise PlanParseError(msg, raw) from exc
    if not drafts:
        msg = "Sprint response contains no tasks"
        raise PlanParseError(msg, raw)

    tasks = [
        Task(
            task_id=d.id or f"t{i}",
            title=d.title,
            description=d.description,
            assigned_to=_resolve_member(d.assigned_to, team),
            dependencies=d.dependencies,
        )
        for i, d in enumerate(drafts, 1)
    ]
    problems = validate_task_graph(tasks, [m.member_id for m in team])
    if problems:
        msg = "Invalid task graph: " + "; ".join(problems)
        raise PlanParseError(msg, raw)
    return Sprint(sprint_id=new_id("sprint"), goal=goal, tasks=tasks)


def _extract(raw: str, pattern: re.Pattern[str]) -> Any:
    match = pattern.search(raw)
    if match is None:
        msg = "No JSON found in model response"
        raise PlanParseError(msg, raw)
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        msg = f"Malformed JSON in model response: {exc}"
        raise PlanParseError(msg, raw) from exc


def _resolve_member(ref: str, team: list[TeamMember]) -> str:
    """Accept a member id, or fall back to a role / display name match."""
    if any(m.member_id == ref for m in team):
        return ref
    wanted = ref.strip().lower()
    for member in team:
        if wanted in (member.role.lower(), member.name.lower()):
            return member.member_id
    return ref


def role_slug(text: str) -> str:
    return _SLUG.sub("-", text.lower()).strip("-") or "agent"


# -- Model calls ---------------------------------------------------------------


async def analyze_team(engine: CompletionEngine, project: Project) -> list[TeamMember]:
    """Ask the model for a roster.  Raises ``PlanParseError``."""
    result = await engine.complete([ModelRequest(parts=[UserPromptPart(content=render_team_analysis(project))])])
    members = parse_team(result.text)
    logger.info("Project %s: team analysis proposed %d member(s)", project.project_id, len(members))
    return members


async def plan_sprint(engine: CompletionEngine, project: Project, goal: str) -> Sprint:
    """Ask the model for a task graph.  Raises ``PlanParseError``."""
    prompt = render_sprint_planning(project, goal)
    result = await engine.complete([ModelRequest(parts=[UserPromptPart(content=prompt)])])
    sprint = parse_sprint(result.text, goal, project.team)
    logger.info(
        "Project %s: planned sprint %s with %d task(s)", project.project_id, sprint.sprint_id, len(sprint.tasks)
    )
    return sprint
