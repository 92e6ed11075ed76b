"""Project coordinator -- the orchestration driver.

Owns the flow described by the project surface:

1. **Create** a project, provisioning (or binding) its workspace;
2. **Analyze** it into a team;
3. **Plan** a sprint into a task graph;
4. **Dispatch** rounds: ask the scheduler for the ready set, run each ready
   task through a ``TaskAgent`` (concurrently, bounded by the running
   workspace cap), write outcomes back, repeat.

Dispatch is explicit: nothing re-runs on state change.  Every task run is
registered in the ``RunRegistry`` so the same task never executes twice at
once and shutdown can drain in-flight work.

Project status follows the work: ``analyzing`` / ``planning`` while the model
plans (rolled back to ``idle`` on failure), ``running`` while a sprint is
active, ``paused`` while it is paused, ``idle`` again once it completes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from crewbox.orchestrator.context import TaskRun
from crewbox.orchestrator.errors import (
    MemberNotFoundError,
    ShuttingDownError,
    StateConflictError,
    WorkspaceNotFoundError,
)
from crewbox.orchestrator.execution.agent import TaskAgent
from crewbox.orchestrator.execution.planning import analyze_team, plan_sprint, role_slug
from crewbox.orchestrator.execution.scheduler import (
    is_sprint_complete,
    ready_tasks,
    sprint_progress,
    unmet_dependencies,
)
from crewbox.orchestrator.models.enums import ProjectStatus, SprintStatus, TaskStatus, WorkspaceStatus
from crewbox.orchestrator.models.project import (
    Project,
    ProjectOverview,
    Sprint,
    SprintOverview,
    SprintRound,
    Task,
    TaskReport,
    TeamMember,
)
from crewbox.orchestrator.registry import RequestLedger
from crewbox.orchestrator.sandbox.recipes import PROJECT_RECIPE
from crewbox.orchestrator.utils import new_id

if TYPE_CHECKING:
    from crewbox.orchestrator.execution.completion import CompletionEngine
    from crewbox.orchestrator.managers.projects import ProjectStore
    from crewbox.orchestrator.registry import RunRegistry
    from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

logger = logging.getLogger(__name__)

_QUIET = frozenset({ProjectStatus.IDLE, ProjectStatus.COMPLETED})
_LOG_TAIL = 2000


class ProjectCoordinator:
    def __init__(
        self,
        projects: ProjectStore,
        workspaces: WorkspaceRegistry,
        engine: CompletionEngine,
        runs: RunRegistry,
        *,
        max_parallel: int = 5,
        task_max_iterations: int = 10,
    ) -> None:
        self.projects = projects
        self.workspaces = workspaces
        self.engine = engine
        self.runs = runs
        self.agent = TaskAgent(engine, workspaces, max_iterations=task_max_iterations)
        self._max_parallel = max_parallel
        self._project_requests = RequestLedger("projects")
        self._sprint_requests = RequestLedger("sprints")
        self._task_requests = RequestLedger("task-runs")

    # ---------------------------------------------------------------------------
    # Project
    # ---------------------------------------------------------------------------

    async def create_project(
        self,
        name: str,
        description: str = "",
        *,
        workspace_id: str | None = None,
        recipe: str | None = None,
        network_enabled: bool = True,
        request_id: str | None = None,
    ) -> Project:
        """Create a project bound to *workspace_id*, or to a freshly provisioned workspace.

        Raises ``StateConflictError`` if the workspace is unusable or its build fails.
        """
        existing = self._project_requests.begin(request_id)
        if existing is not None:
            return self.projects.get(existing)
        try:
            if workspace_id is not None:
                ws = self.workspaces.require(workspace_id)
                if not ws.is_live:
                    msg = f"Workspace '{workspace_id}' is destroyed"
                    raise StateConflictError(msg)
            else:
                ws = await self.workspaces.create_from_recipe(
                    f"{name}-workspace",
                    recipe or PROJECT_RECIPE,
                    network_enabled=network_enabled,
                )
                if ws.status == WorkspaceStatus.FAILED:
                    await self.workspaces.destroy(ws.workspace_id)
                    tail = (ws.build_log or "")[-_LOG_TAIL:]
                    msg = f"Workspace build failed for project '{name}':\n{tail}"
                    raise StateConflictError(msg)
            project = await self.projects.create(name, ws.workspace_id, description=description)
        except BaseException:
            self._project_requests.abandon(request_id)
            raise
        self._project_requests.finish(request_id, project.project_id)
        return project

    async def delete_project(self, project_id: str, *, keep_workspace: bool = False) -> Project:
        """Delete a project, destroying its workspace unless *keep_workspace*."""
        if self.runs.by_project(project_id):
            msg = f"Project '{project_id}' has tasks running"
            raise StateConflictError(msg)
        project = await self.projects.delete(project_id)
        if not keep_workspace:
            try:
                await self.workspaces.destroy(project.workspace_id)
            except WorkspaceNotFoundError:
                logger.warning("Project %s: workspace %s already gone", project_id, project.workspace_id)
        return project

    def overview(self, project_id: str) -> ProjectOverview:
        project = self.projects.get(project_id)
        return ProjectOverview(
            project_id=project.project_id,
            name=project.name,
            status=project.status,
            workspace_id=project.workspace_id,
            team=project.team,
            sprints=[_sprint_overview(s) for s in project.sprints],
        )

    # ---------------------------------------------------------------------------
    # Team
    # ---------------------------------------------------------------------------

    async def analyze_team(self, project_id: str) -> Project:
        """Synthesize the team from the project description.  Raises ``PlanParseError``."""
        project = self._require_quiet(project_id, "analyze the team of")
        await self.projects.set_status(project_id, ProjectStatus.ANALYZING)
        try:
            members = await analyze_team(self.engine, project)
        except BaseException:
            await self.projects.set_status(project_id, ProjectStatus.IDLE)
            raise
        return await self.projects.set_team(project_id, members)

    async def add_member(
        self,
        project_id: str,
        role: str,
        name: str,
        system_prompt: str,
        capabilities: list[str] | None = None,
    ) -> TeamMember:
        member = TeamMember(
            member_id=new_id(f"member-{role_slug(role)}"),
            role=role,
            name=name,
            system_prompt=system_prompt,
            capabilities=capabilities or [],
        )
        await self.projects.add_team_member(project_id, member)
        return member

    async def remove_member(self, project_id: str, member_id: str) -> Project:
        return await self.projects.remove_team_member(project_id, member_id)

    # ---------------------------------------------------------------------------
    # Sprint
    # ---------------------------------------------------------------------------

    async def create_sprint(self, project_id: str, goal: str, *, request_id: str | None = None) -> Sprint:
        """Plan a sprint for *goal*.  Raises ``PlanParseError`` for unusable plans."""
        existing = self._sprint_requests.begin(request_id)
        if existing is not None:
            return self.projects.get_sprint(project_id, existing)
        try:
            sprint = await self._plan(project_id, goal)
        except BaseException:
            self._sprint_requests.abandon(request_id)
            raise
        self._sprint_requests.finish(request_id, sprint.sprint_id)
        return sprint

    async def _plan(self, project_id: str, goal: str) -> Sprint:
        project = self._require_quiet(project_id, "plan a sprint for")
        if not project.team:
            msg = f"Project '{project_id}' has no team; analyze it or add members first"
            raise StateConflictError(msg)
        await self.projects.set_status(project_id, ProjectStatus.PLANNING)
        try:
            sprint = await plan_sprint(self.engine, project, goal)
        except BaseException:
            await self.projects.set_status(project_id, ProjectStatus.IDLE)
            raise
        await self.projects.add_sprint(project_id, sprint)
        await self.projects.set_status(project_id, ProjectStatus.IDLE)
        return sprint

    async def start_sprint(self, project_id: str, sprint_id: str) -> SprintRound:
        """Activate the sprint if needed and dispatch one round of ready tasks."""
        await self._activate(project_id, sprint_id)
        return await self._dispatch_round(project_id, sprint_id)

    async def drive_sprint(
        self,
        project_id: str,
        sprint_id: str,
        *,
        max_rounds: int | None = None,
    ) -> list[SprintRound]:
        """Dispatch rounds until nothing is ready, the sprint completes or it is paused."""
        sprint = await self._activate(project_id, sprint_id)
        limit = max_rounds or len(sprint.tasks) + 1
        rounds: list[SprintRound] = []
        for _ in range(limit):
            result = await self._dispatch_round(project_id, sprint_id)
            rounds.append(result)
            if not result.dispatched or result.sprint_status != SprintStatus.ACTIVE:
                break
        return rounds

    async def pause_sprint(self, project_id: str, sprint_id: str) -> Sprint:
        sprint = self.projects.get_sprint(project_id, sprint_id)
        if sprint.status != SprintStatus.ACTIVE:
            msg = f"Sprint '{sprint_id}' is {sprint.status}, only an active sprint can be paused"
            raise StateConflictError(msg)
        sprint = await self.projects.update_sprint(project_id, sprint_id, {"status": SprintStatus.PAUSED})
        await self.projects.set_status(project_id, ProjectStatus.PAUSED)
        logger.info("Project %s: sprint %s paused", project_id, sprint_id)
        return sprint

    async def resume_sprint(self, project_id: str, sprint_id: str) -> Sprint:
        sprint = self.projects.get_sprint(project_id, sprint_id)
        if sprint.status != SprintStatus.PAUSED:
            msg = f"Sprint '{sprint_id}' is {sprint.status}, only a paused sprint can be resumed"
            raise StateConflictError(msg)
        sprint = await self.projects.update_sprint(project_id, sprint_id, {"status": SprintStatus.ACTIVE})
        await self.projects.set_status(project_id, ProjectStatus.RUNNING)
        logger.info("Project %s: sprint %s resumed", project_id, sprint_id)
        return sprint

    async def complete_sprint(self, project_id: str, sprint_id: str) -> Sprint:
        """Force the sprint closed.  Unfinished tasks keep their status."""
        sprint = await self.projects.update_sprint(project_id, sprint_id, {"status": SprintStatus.COMPLETED})
        await self.projects.set_status(project_id, ProjectStatus.IDLE)
        logger.info("Project %s: sprint %s completed", project_id, sprint_id)
        return sprint

    def sprint_status(self, project_id: str, sprint_id: str) -> SprintOverview:
        return _sprint_overview(self.projects.get_sprint(project_id, sprint_id))

    async def _activate(self, project_id: str, sprint_id: str) -> Sprint:
        sprint = self.projects.get_sprint(project_id, sprint_id)
        if sprint.status == SprintStatus.PAUSED:
            msg = f"Sprint '{sprint_id}' is paused; resume it first"
            raise StateConflictError(msg)
        if sprint.status == SprintStatus.COMPLETED:
            msg = f"Sprint '{sprint_id}' is already completed"
            raise StateConflictError(msg)
        if sprint.status == SprintStatus.PLANNING:
            sprint = await self.projects.update_sprint(project_id, sprint_id, {"status": SprintStatus.ACTIVE})
            logger.info("Project %s: sprint %s started", project_id, sprint_id)
        await self.projects.set_status(project_id, ProjectStatus.RUNNING)
        return sprint

    async def _dispatch_round(self, project_id: str, sprint_id: str) -> SprintRound:
        if self.runs.is_shutting_down:
            raise ShuttingDownError
        sprint = self.projects.get_sprint(project_id, sprint_id)
        ready = [
            t
            for t in ready_tasks(sprint)
            if not self.runs.is_running(project_id, sprint_id, t.task_id)
        ]
        logger.info("Project %s: sprint %s round dispatching %d task(s)", project_id, sprint_id, len(ready))

        limiter = asyncio.Semaphore(self._max_parallel)

        async def bounded(task: Task) -> TaskReport:
            async with limiter:
                return await self._execute(project_id, sprint_id, task)

        reports = list(await asyncio.gather(*(bounded(t) for t in ready)))
        sprint = await self._check_completion(project_id, sprint_id)
        return SprintRound(
            sprint_id=sprint_id,
            dispatched=reports,
            sprint_status=sprint.status,
            progress=sprint_progress(sprint),
        )

    async def _check_completion(self, project_id: str, sprint_id: str) -> Sprint:
        sprint = self.projects.get_sprint(project_id, sprint_id)
        if sprint.status == SprintStatus.ACTIVE and is_sprint_complete(sprint):
            sprint = await self.complete_sprint(project_id, sprint_id)
        return sprint

    # ---------------------------------------------------------------------------
    # Task
    # ---------------------------------------------------------------------------

    def list_tasks(self, project_id: str, sprint_id: str) -> list[Task]:
        return self.projects.get_sprint(project_id, sprint_id).tasks

    def task_status(self, project_id: str, sprint_id: str, task_id: str) -> Task:
        return self.projects.get_task(project_id, sprint_id, task_id)

    async def run_task(
        self,
        project_id: str,
        sprint_id: str,
        task_id: str,
        *,
        request_id: str | None = None,
    ) -> Task:
        """Run one task now, bypassing the ready set but not its dependencies."""
        existing = self._task_requests.begin(request_id)
        if existing is not None:
            return self.projects.get_task(project_id, sprint_id, existing)
        try:
            sprint = self.projects.get_sprint(project_id, sprint_id)
            task = self.projects.get_task(project_id, sprint_id, task_id)
            if task.status == TaskStatus.DONE:
                msg = f"Task '{task_id}' is {task.status}"
                raise StateConflictError(msg)
            self._require_idle_task(project_id, sprint_id, task_id)
            unmet = unmet_dependencies(sprint, task)
            if unmet:
                msg = f"Task '{task_id}' has unmet dependencies: {', '.join(unmet)}"
                raise StateConflictError(msg)
            await self._execute(project_id, sprint_id, task)
            await self._check_completion(project_id, sprint_id)
        except BaseException:
            self._task_requests.abandon(request_id)
            raise
        self._task_requests.finish(request_id, task_id)
        return self.projects.get_task(project_id, sprint_id, task_id)

    async def retry_task(self, project_id: str, sprint_id: str, task_id: str) -> Task:
        """Reset a failed or orphaned task to pending and count the retry."""
        task = self._require_idle_task(project_id, sprint_id, task_id)
        if task.status not in (TaskStatus.FAILED, TaskStatus.IN_PROGRESS):
            msg = f"Only failed tasks can be retried; task '{task_id}' is {task.status}"
            raise StateConflictError(msg)
        return await self.projects.update_task(
            project_id,
            sprint_id,
            task_id,
            {"status": TaskStatus.PENDING, "output": None, "retries": task.retries + 1},
        )

    async def skip_task(self, project_id: str, sprint_id: str, task_id: str, reason: str = "Manually skipped") -> Task:
        """Force a task to done so its dependents can proceed."""
        self._require_idle_task(project_id, sprint_id, task_id)
        task = await self.projects.update_task(
            project_id,
            sprint_id,
            task_id,
            {"status": TaskStatus.DONE, "output": f"[SKIPPED] {reason}"},
        )
        await self._check_completion(project_id, sprint_id)
        return task

    async def reassign_task(self, project_id: str, sprint_id: str, task_id: str, member_id: str) -> Task:
        if self.projects.get(project_id).find_member(member_id) is None:
            raise MemberNotFoundError(member_id)
        self._require_idle_task(project_id, sprint_id, task_id)
        return await self.projects.update_task(project_id, sprint_id, task_id, {"assigned_to": member_id})

    async def _execute(self, project_id: str, sprint_id: str, task: Task) -> TaskReport:
        """Run one task through the agent and record its outcome."""
        project = self.projects.get(project_id)
        run = TaskRun(
            run_id=new_id("run"),
            project_id=project_id,
            sprint_id=sprint_id,
            task_id=task.task_id,
            member_id=task.assigned_to,
            workspace_id=project.workspace_id,
        )
        self.runs.register(run)
        try:
            await self.projects.update_task(project_id, sprint_id, task.task_id, {"status": TaskStatus.IN_PROGRESS})
            member = project.find_member(task.assigned_to)
            if member is None:
                status, output = TaskStatus.FAILED, f"Error: assigned member '{task.assigned_to}' is not on the team"
            else:
                completed = [
                    t
                    for t in self.projects.get_sprint(project_id, sprint_id).tasks
                    if t.status == TaskStatus.DONE
                ]
                try:
                    outcome = await self.agent.run(task, member, project, completed=completed)
                except Exception as exc:
                    logger.exception("Task %s crashed", task.task_id)
                    status, output = TaskStatus.FAILED, f"Error: {exc}"
                else:
                    status = TaskStatus.DONE if outcome.success else TaskStatus.FAILED
                    output = outcome.output
            updated = await self.projects.update_task(
                project_id, sprint_id, task.task_id, {"status": status, "output": output}
            )
        finally:
            self.runs.unregister(run)
        logger.info("Project %s: task %s -> %s", project_id, task.task_id, updated.status)
        return TaskReport(task_id=updated.task_id, title=updated.title, status=updated.status, output=updated.output)

    # ---------------------------------------------------------------------------
    # Guards
    # ---------------------------------------------------------------------------

    def _require_quiet(self, project_id: str, action: str) -> Project:
        project = self.projects.get(project_id)
        if project.status not in _QUIET:
            msg = f"Cannot {action} project '{project_id}' while it is {project.status}"
            raise StateConflictError(msg)
        return project

    def _require_idle_task(self, project_id: str, sprint_id: str, task_id: str) -> Task:
        task = self.projects.get_task(project_id, sprint_id, task_id)
        if self.runs.is_running(project_id, sprint_id, task_id):
            msg = f"Task '{task_id}' is running"
            raise StateConflictError(msg)
        return task


def _sprint_overview(sprint: Sprint) -> SprintOverview:
    return SprintOverview(
        sprint_id=sprint.sprint_id,
        goal=sprint.goal,
        status=sprint.status,
        progress=sprint_progress(sprint),
    )
