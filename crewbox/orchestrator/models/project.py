"""Project graph models: Project -> Team / Sprints -> Tasks.

These are pure Pydantic models.  The project store treats them as
immutable values: every mutation builds a merged copy and replaces the
whole project.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from crewbox.orchestrator.models.enums import ProjectStatus, SprintStatus, TaskStatus


class TeamMember(BaseModel):
    """An agent persona on the project roster."""

    member_id: str
    role: str
    name: str
    system_prompt: str
    capabilities: list[str] = Field(default_factory=list)


class Task(BaseModel):
    task_id: str
    title: str
    description: str = ""
    assigned_to: str = Field(description="TeamMember id")
    dependencies: list[str] = Field(default_factory=list, description="Task ids within the same sprint")
    status: TaskStatus = TaskStatus.PENDING
    output: str | None = None
    retries: int = 0


class Sprint(BaseModel):
    sprint_id: str
    goal: str
    tasks: list[Task] = Field(default_factory=list)
    status: SprintStatus = SprintStatus.PLANNING

    def find_task(self, task_id: str) -> Task | None:
        return next((t for t in self.tasks if t.task_id == task_id), None)


class Project(BaseModel):
    project_id: str
    name: str
    description: str = ""
    workspace_id: str
    team: list[TeamMember] = Field(default_factory=list)
    sprints: list[Sprint] = Field(default_factory=list)
    status: ProjectStatus = ProjectStatus.IDLE
    created_at: datetime
    updated_at: datetime

    def find_member(self, member_id: str) -> TeamMember | None:
        return next((m for m in self.team if m.member_id == member_id), None)

    def find_sprint(self, sprint_id: str) -> Sprint | None:
        return next((s for s in self.sprints if s.sprint_id == sprint_id), None)


class SprintProgress(BaseModel):
    done: int
    failed: int
    total: int

    @computed_field
    @property
    def percent(self) -> int:
        return round(self.done / self.total * 100) if self.total else 0


# -- Coordinator views ---------------------------------------------------------


class TaskReport(BaseModel):
    """What happened to one task in a dispatch round."""

    task_id: str
    title: str
    status: TaskStatus
    output: str | None = None


class SprintRound(BaseModel):
    """Result of one scheduler tick: the tasks dispatched and where the sprint stands."""

    sprint_id: str
    dispatched: list[TaskReport] = Field(default_factory=list)
    sprint_status: SprintStatus
    progress: SprintProgress


class SprintOverview(BaseModel):
    sprint_id: str
    goal: str
    status: SprintStatus
    progress: SprintProgress


class ProjectOverview(BaseModel):
    project_id: str
    name: str
    status: ProjectStatus
    workspace_id: str
    team: list[TeamMember]
    sprints: list[SprintOverview]
