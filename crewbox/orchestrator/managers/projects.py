"""Project store: the persisted Project -> Team / Sprints -> Tasks graph.

Every mutation is replace-on-copy: locate the nested entity by id, build a
merged copy, rebuild the enclosing containers around it and replace the
whole project, all under one lock so concurrent task outcomes never lose
each other's updates.  No operation here validates the task graph; that
happens when a sprint plan is accepted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel

from crewbox.orchestrator.errors import (
    MemberNotFoundError,
    ProjectNotFoundError,
    SprintNotFoundError,
    TaskNotFoundError,
)
from crewbox.orchestrator.models.enums import ProjectStatus, TaskStatus
from crewbox.orchestrator.models.project import Project, Sprint, Task, TeamMember
from crewbox.orchestrator.store.base import RecordStore
from crewbox.orchestrator.utils import new_id, utcnow

_PROJECT_FIELDS = frozenset({"name", "description", "status", "workspace_id"})
_SPRINT_FIELDS = frozenset({"goal", "status", "tasks"})
_TASK_FIELDS = frozenset({"title", "description", "assigned_to", "dependencies", "status", "output", "retries"})
_PLANNING = frozenset({ProjectStatus.ANALYZING, ProjectStatus.PLANNING})

INTERRUPTED_OUTPUT = "Error: the run was interrupted before it finished"

RecordT = TypeVar("RecordT", bound=BaseModel)


def _check_fields(kind: str, changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        msg = f"Cannot update {kind} field(s): {', '.join(sorted(unknown))}"
        raise ValueError(msg)


def _merge(current: RecordT, changes: dict[str, Any]) -> RecordT:
    """Apply *changes* and re-validate, so a bad value (an explicit null included) is rejected.

    Raises ``pydantic.ValidationError``, a ``ValueError``.
    """
    return type(current).model_validate({**current.model_dump(), **changes})


def _reconcile(project: Project) -> Project:
    sprints = []
    for sprint in project.sprints:
        tasks = [
            t.model_copy(update={"status": TaskStatus.FAILED, "output": INTERRUPTED_OUTPUT})
            if t.status == TaskStatus.IN_PROGRESS
            else t
            for t in sprint.tasks
        ]
        sprints.append(sprint.model_copy(update={"tasks": tasks}) if tasks != sprint.tasks else sprint)
    status = ProjectStatus.IDLE if project.status in _PLANNING else project.status
    if status == project.status and sprints == project.sprints:
        return project
    return project.model_copy(update={"sprints": sprints, "status": status})


class ProjectStore:
    collection = "projects"

    def __init__(self, store: RecordStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._projects: dict[str, Project] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Read persisted projects and reconcile work a previous process left unfinished.

        ``in_progress`` tasks had no run to finish them and become ``failed``;
        projects stuck ``analyzing`` or ``planning`` return to ``idle``.
        """
        records = await self._store.load_all(self.collection, Project)
        self._projects = {}
        for project in records:
            reconciled = _reconcile(project)
            if reconciled is not project:
                logger.warning("Projects: {} had interrupted work, reconciled on load", project.project_id)
                await self._store.save(self.collection, project.project_id, reconciled)
            self._projects[project.project_id] = reconciled
        logger.info("Projects: loaded {} project(s)", len(self._projects))

    # -- Project ---------------------------------------------------------------

    async def create(self, name: str, workspace_id: str, *, description: str = "") -> Project:
        now = self._clock()
        project = Project(
            project_id=new_id("proj"),
            name=name,
            description=description,
            workspace_id=workspace_id,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            await self._put(project)
        logger.info("Projects: created {} ({}, workspace={})", project.project_id, name, workspace_id)
        return project

    def get(self, project_id: str) -> Project:
        """Raises ``ProjectNotFoundError`` if missing."""
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def list(self) -> list[Project]:
        return sorted(self._projects.values(), key=lambda p: p.created_at)

    async def delete(self, project_id: str) -> Project:
        async with self._lock:
            project = self.get(project_id)
            del self._projects[project_id]
            await self._store.delete(self.collection, project_id)
        logger.info("Projects: deleted {}", project_id)
        return project

    async def update(self, project_id: str, changes: dict[str, Any]) -> Project:
        """Shallow-merge top-level project fields."""
        _check_fields("project", changes, _PROJECT_FIELDS)
        async with self._lock:
            project = self.get(project_id)
            if "status" in changes and changes["status"] != project.status:
                logger.info("Projects: {} status {} -> {}", project_id, project.status, changes["status"])
            return await self._put(_merge(project, changes))

    async def set_status(self, project_id: str, status: ProjectStatus) -> Project:
        return await self.update(project_id, {"status": status})

    # -- Team ------------------------------------------------------------------

    async def set_team(self, project_id: str, members: list[TeamMember]) -> Project:
        """Replace the whole roster and return the project to idle."""
        async with self._lock:
            project = self.get(project_id)
            updated = await self._put(project.model_copy(update={"team": list(members), "status": ProjectStatus.IDLE}))
        logger.info("Projects: {} team set ({} member(s))", project_id, len(members))
        return updated

    async def add_team_member(self, project_id: str, member: TeamMember) -> Project:
        async with self._lock:
            project = self.get(project_id)
            team = [m for m in project.team if m.member_id != member.member_id] + [member]
            return await self._put(project.model_copy(update={"team": team}))

    async def remove_team_member(self, project_id: str, member_id: str) -> Project:
        async with self._lock:
            project = self.get(project_id)
            if project.find_member(member_id) is None:
                raise MemberNotFoundError(member_id)
            team = [m for m in project.team if m.member_id != member_id]
            return await self._put(project.model_copy(update={"team": team}))

    # -- Sprint ----------------------------------------------------------------

    async def add_sprint(self, project_id: str, sprint: Sprint) -> Project:
        async with self._lock:
            project = self.get(project_id)
            updated = await self._put(project.model_copy(update={"sprints": [*project.sprints, sprint]}))
        logger.info("Projects: {} sprint {} added ({} task(s))", project_id, sprint.sprint_id, len(sprint.tasks))
        return updated

    async def update_sprint(self, project_id: str, sprint_id: str, changes: dict[str, Any]) -> Sprint:
        """Shallow-merge sprint fields.  Returns the updated sprint."""
        _check_fields("sprint", changes, _SPRINT_FIELDS)
        async with self._lock:
            project = self.get(project_id)
            sprint = _merge(self._find_sprint(project, sprint_id), changes)
            await self._put(self._with_sprint(project, sprint))
        return sprint

    def get_sprint(self, project_id: str, sprint_id: str) -> Sprint:
        return self._find_sprint(self.get(project_id), sprint_id)

    # -- Task ------------------------------------------------------------------

    async def update_task(self, project_id: str, sprint_id: str, task_id: str, changes: dict[str, Any]) -> Task:
        """Shallow-merge task fields.  Returns the updated task."""
        _check_fields("task", changes, _TASK_FIELDS)
        async with self._lock:
            project = self.get(project_id)
            sprint = self._find_sprint(project, sprint_id)
            task = _merge(self._find_task(sprint, task_id), changes)
            tasks = [task if t.task_id == task_id else t for t in sprint.tasks]
            await self._put(self._with_sprint(project, sprint.model_copy(update={"tasks": tasks})))
        return task

    def get_task(self, project_id: str, sprint_id: str, task_id: str) -> Task:
        return self._find_task(self.get_sprint(project_id, sprint_id), task_id)

    # -- Internal --------------------------------------------------------------

    @staticmethod
    def _find_sprint(project: Project, sprint_id: str) -> Sprint:
        sprint = project.find_sprint(sprint_id)
        if sprint is None:
            raise SprintNotFoundError(sprint_id)
        return sprint

    @staticmethod
    def _find_task(sprint: Sprint, task_id: str) -> Task:
        task = sprint.find_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    @staticmethod
    def _with_sprint(project: Project, sprint: Sprint) -> Project:
        sprints = [sprint if s.sprint_id == sprint.sprint_id else s for s in project.sprints]
        return project.model_copy(update={"sprints": sprints})

    async def _put(self, project: Project) -> Project:
        project = project.model_copy(update={"updated_at": self._clock()})
        self._projects[project.project_id] = project
        await self._store.save(self.collection, project.project_id, project)
        return project
