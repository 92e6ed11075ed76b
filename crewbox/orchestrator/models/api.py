"""API request schemas for the RPC endpoints.

These thin schemas sit between HTTP and the services.  They are separate
from the domain models in ``workspace.py`` / ``catalog.py`` / ``project.py``
because they serve a different purpose:

- **Create** schemas validate user input and provide defaults.
- **Update** schemas allow partial updates via ``exclude_unset``.

Responses are the domain models themselves.  ``request_id`` fields are
optional caller-supplied idempotency keys: a repeated id returns the entity
the first request produced.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from crewbox.orchestrator.models.enums import ProjectStatus, ToolRuntime

# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


class WorkspaceCreate(BaseModel):
    """Input for creating a workspace from a recipe or a template.

    With neither ``recipe`` nor ``template_id`` the default bare recipe is used.
    """

    name: str
    recipe: str | None = None
    template_id: str | None = None
    network_enabled: bool = False
    request_id: str | None = None

    @model_validator(mode="after")
    def _recipe_or_template(self) -> WorkspaceCreate:
        if self.recipe is not None and self.template_id is not None:
            msg = "Provide either recipe or template_id, not both"
            raise ValueError(msg)
        return self


class RecipeUpdate(BaseModel):
    recipe: str


class WorkspaceDestroy(BaseModel):
    keep_volume: bool = False


class ExecRequest(BaseModel):
    command: str
    timeout: float | None = Field(default=None, gt=0, description="Seconds; defaults to the configured exec timeout.")


class FileWrite(BaseModel):
    path: str = Field(description="Relative to the workspace working directory.")
    content: str


class FileContent(BaseModel):
    path: str
    content: str


class VerifyRequest(BaseModel):
    command: str


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------


class TemplateCreate(BaseModel):
    name: str
    description: str = ""
    recipe: str
    test_command: str | None = None


class TemplateUpdate(BaseModel):
    """Partial update -- only fields explicitly set by the caller are applied.

    Routers should use ``body.model_dump(exclude_unset=True)`` to extract
    only the provided fields.
    """

    name: str | None = None
    description: str | None = None
    recipe: str | None = None
    test_command: str | None = None


class TemplateFromWorkspace(BaseModel):
    """Save a workspace's current recipe as a new template."""

    workspace_id: str
    name: str
    description: str = ""
    test_command: str | None = None


# ---------------------------------------------------------------------------
# Custom tool
# ---------------------------------------------------------------------------


class ToolCreate(BaseModel):
    name: str
    description: str = ""
    script: str
    runtime: ToolRuntime = ToolRuntime.SHELL


class ToolUpdate(BaseModel):
    """Partial custom tool update."""

    name: str | None = None
    description: str | None = None
    script: str | None = None
    runtime: ToolRuntime | None = None


class ToolRun(BaseModel):
    workspace_id: str


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    """Input for creating a project.

    Binds ``workspace_id`` when given; otherwise a fresh workspace is
    provisioned from ``recipe`` (or the default project recipe).
    """

    name: str
    description: str = ""
    workspace_id: str | None = None
    recipe: str | None = None
    network_enabled: bool = True
    request_id: str | None = None


class ProjectUpdate(BaseModel):
    """Partial project update."""

    name: str | None = None
    description: str | None = None
    status: ProjectStatus | None = None


class ProjectDelete(BaseModel):
    keep_workspace: bool = False


class TeamMemberCreate(BaseModel):
    role: str
    name: str
    system_prompt: str
    capabilities: list[str] = Field(default_factory=list)


class SprintCreate(BaseModel):
    goal: str
    request_id: str | None = None


class SprintDrive(BaseModel):
    max_rounds: int | None = Field(default=None, gt=0)


class TaskRunRequest(BaseModel):
    request_id: str | None = None


class TaskSkip(BaseModel):
    reason: str = "Manually skipped"


class TaskReassign(BaseModel):
    member_id: str


# ---------------------------------------------------------------------------
# Sandbox controller
# ---------------------------------------------------------------------------


class ControllerChat(BaseModel):
    """One turn with the sandbox controller.

    ``history`` is the ``history`` of the previous reply, sent back verbatim
    to continue the conversation.
    """

    message: str = Field(min_length=1)
    history: list[dict[str, Any]] = Field(default_factory=list)
    max_iterations: int | None = Field(default=None, gt=0)


class ControllerToolCall(BaseModel):
    tool_name: str
    result: str
    is_error: bool = False


class ControllerReply(BaseModel):
    text: str
    tool_calls: list[ControllerToolCall] = Field(default_factory=list)
    rounds: int = 0
    hit_iteration_cap: bool = False
    history: list[dict[str, Any]] = Field(default_factory=list)
