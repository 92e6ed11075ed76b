"""Project, team, sprint and task endpoints (RPC-style).

Planning endpoints (team analysis, sprint creation) call the language model
and can take a while; dispatch endpoints run agents to completion before
responding.
"""

from __future__ import annotations

from fastapi import APIRouter, status

from crewbox.orchestrator.deps import Coordinator
from crewbox.orchestrator.models.api import (
    ProjectCreate,
    ProjectDelete,
    ProjectUpdate,
    SprintCreate,
    SprintDrive,
    TaskReassign,
    TaskRunRequest,
    TaskSkip,
    TeamMemberCreate,
)
from crewbox.orchestrator.models.project import (
    Project,
    ProjectOverview,
    Sprint,
    SprintOverview,
    SprintRound,
    Task,
    TeamMember,
)

router = APIRouter(prefix="/projects", tags=["projects"])


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


@router.post("/create", response_model=Project, status_code=status.HTTP_201_CREATED)
async def create_project(body: ProjectCreate, coordinator: Coordinator) -> Project:
    """Create a project, provisioning a workspace unless one is given."""
    return await coordinator.create_project(
        body.name,
        body.description,
        workspace_id=body.workspace_id,
        recipe=body.recipe,
        network_enabled=body.network_enabled,
        request_id=body.request_id,
    )


@router.get("/list", response_model=list[Project])
async def list_projects(coordinator: Coordinator) -> list[Project]:
    return coordinator.projects.list()


@router.get("/{project_id}/get", response_model=Project)
async def get_project(project_id: str, coordinator: Coordinator) -> Project:
    return coordinator.projects.get(project_id)


@router.get("/{project_id}/overview", response_model=ProjectOverview)
async def project_overview(project_id: str, coordinator: Coordinator) -> ProjectOverview:
    """Status, team and per-sprint progress."""
    return coordinator.overview(project_id)


@router.post("/{project_id}/update", response_model=Project)
async def update_project(project_id: str, body: ProjectUpdate, coordinator: Coordinator) -> Project:
    return await coordinator.projects.update(project_id, body.model_dump(exclude_unset=True))


@router.post("/{project_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: str, body: ProjectDelete, coordinator: Coordinator) -> None:
    await coordinator.delete_project(project_id, keep_workspace=body.keep_workspace)


# ---------------------------------------------------------------------------
# Team
# ---------------------------------------------------------------------------


@router.post("/{project_id}/team/analyze", response_model=Project)
async def analyze_team(project_id: str, coordinator: Coordinator) -> Project:
    """Replace the team with one synthesized from the project description."""
    return await coordinator.analyze_team(project_id)


@router.get("/{project_id}/team/list", response_model=list[TeamMember])
async def list_team(project_id: str, coordinator: Coordinator) -> list[TeamMember]:
    return coordinator.projects.get(project_id).team


@router.post("/{project_id}/team/add", response_model=TeamMember, status_code=status.HTTP_201_CREATED)
async def add_member(project_id: str, body: TeamMemberCreate, coordinator: Coordinator) -> TeamMember:
    return await coordinator.add_member(
        project_id,
        body.role,
        body.name,
        body.system_prompt,
        body.capabilities,
    )


@router.post("/{project_id}/team/{member_id}/remove", response_model=Project)
async def remove_member(project_id: str, member_id: str, coordinator: Coordinator) -> Project:
    return await coordinator.remove_member(project_id, member_id)


# ---------------------------------------------------------------------------
# Sprint
# ---------------------------------------------------------------------------


@router.post("/{project_id}/sprints/create", response_model=Sprint, status_code=status.HTTP_201_CREATED)
async def create_sprint(project_id: str, body: SprintCreate, coordinator: Coordinator) -> Sprint:
    """Plan a sprint: the model breaks the goal into a task graph."""
    return await coordinator.create_sprint(project_id, body.goal, request_id=body.request_id)


@router.post("/{project_id}/sprints/{sprint_id}/start", response_model=SprintRound)
async def start_sprint(project_id: str, sprint_id: str, coordinator: Coordinator) -> SprintRound:
    """Dispatch one round of ready tasks."""
    return await coordinator.start_sprint(project_id, sprint_id)


@router.post("/{project_id}/sprints/{sprint_id}/drive", response_model=list[SprintRound])
async def drive_sprint(
    project_id: str,
    sprint_id: str,
    body: SprintDrive,
    coordinator: Coordinator,
) -> list[SprintRound]:
    """Dispatch rounds until nothing more can run."""
    return await coordinator.drive_sprint(project_id, sprint_id, max_rounds=body.max_rounds)


@router.post("/{project_id}/sprints/{sprint_id}/pause", response_model=Sprint)
async def pause_sprint(project_id: str, sprint_id: str, coordinator: Coordinator) -> Sprint:
    return await coordinator.pause_sprint(project_id, sprint_id)


@router.post("/{project_id}/sprints/{sprint_id}/resume", response_model=Sprint)
async def resume_sprint(project_id: str, sprint_id: str, coordinator: Coordinator) -> Sprint:
    return await coordinator.resume_sprint(project_id, sprint_id)


@router.post("/{project_id}/sprints/{sprint_id}/complete", response_model=Sprint)
async def complete_sprint(project_id: str, sprint_id: str, coordinator: Coordinator) -> Sprint:
    return await coordinator.complete_sprint(project_id, sprint_id)


@router.get("/{project_id}/sprints/{sprint_id}/status", response_model=SprintOverview)
async def sprint_status(project_id: str, sprint_id: str, coordinator: Coordinator) -> SprintOverview:
    return coordinator.sprint_status(project_id, sprint_id)


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


@router.get("/{project_id}/sprints/{sprint_id}/tasks/list", response_model=list[Task])
async def list_tasks(project_id: str, sprint_id: str, coordinator: Coordinator) -> list[Task]:
    return coordinator.list_tasks(project_id, sprint_id)


@router.get("/{project_id}/sprints/{sprint_id}/tasks/{task_id}/get", response_model=Task)
async def task_status(project_id: str, sprint_id: str, task_id: str, coordinator: Coordinator) -> Task:
    return coordinator.task_status(project_id, sprint_id, task_id)


@router.post("/{project_id}/sprints/{sprint_id}/tasks/{task_id}/run", response_model=Task)
async def run_task(
    project_id: str,
    sprint_id: str,
    task_id: str,
    body: TaskRunRequest,
    coordinator: Coordinator,
) -> Task:
    """Run one task now, outside the dispatch rounds."""
    return await coordinator.run_task(project_id, sprint_id, task_id, request_id=body.request_id)


@router.post("/{project_id}/sprints/{sprint_id}/tasks/{task_id}/retry", response_model=Task)
async def retry_task(project_id: str, sprint_id: str, task_id: str, coordinator: Coordinator) -> Task:
    return await coordinator.retry_task(project_id, sprint_id, task_id)


@router.post("/{project_id}/sprints/{sprint_id}/tasks/{task_id}/skip", response_model=Task)
async def skip_task(project_id: str, sprint_id: str, task_id: str, body: TaskSkip, coordinator: Coordinator) -> Task:
    return await coordinator.skip_task(project_id, sprint_id, task_id, body.reason)


@router.post("/{project_id}/sprints/{sprint_id}/tasks/{task_id}/reassign", response_model=Task)
async def reassign_task(
    project_id: str,
    sprint_id: str,
    task_id: str,
    body: TaskReassign,
    coordinator: Coordinator,
) -> Task:
    return await coordinator.reassign_task(project_id, sprint_id, task_id, body.member_id)
