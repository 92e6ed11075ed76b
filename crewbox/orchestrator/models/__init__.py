"""Data models for the orchestrator."""

from crewbox.orchestrator.models.api import (
    ExecRequest,
    ProjectCreate,
    SprintCreate,
    TemplateCreate,
    ToolCreate,
    WorkspaceCreate,
)
from crewbox.orchestrator.models.catalog import CustomTool, Template
from crewbox.orchestrator.models.enums import (
    ProjectStatus,
    SprintStatus,
    TaskStatus,
    ToolRuntime,
    WorkspaceStatus,
)
from crewbox.orchestrator.models.project import (
    Project,
    ProjectOverview,
    Sprint,
    SprintOverview,
    SprintProgress,
    SprintRound,
    Task,
    TaskReport,
    TeamMember,
)
from crewbox.orchestrator.models.workspace import (
    BuildResult,
    ExecResult,
    RebuildResult,
    Workspace,
    WorkspaceTestResult,
)

__all__ = [
    "BuildResult",
    # Catalog
    "CustomTool",
    # API schemas
    "ExecRequest",
    "ExecResult",
    # Project graph
    "Project",
    "ProjectCreate",
    "ProjectOverview",
    # Enums
    "ProjectStatus",
    "RebuildResult",
    "Sprint",
    "SprintCreate",
    "SprintOverview",
    "SprintProgress",
    "SprintRound",
    "SprintStatus",
    "Task",
    "TaskReport",
    "TaskStatus",
    "TeamMember",
    "Template",
    "TemplateCreate",
    "ToolCreate",
    "ToolRuntime",
    # Workspace
    "Workspace",
    "WorkspaceCreate",
    "WorkspaceStatus",
    "WorkspaceTestResult",
]
