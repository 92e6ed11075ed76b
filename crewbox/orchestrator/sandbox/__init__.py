"""Sandbox layer: container engine driver and the workspace registry built on it."""

from crewbox.orchestrator.sandbox.driver import ContainerDriver, ContainerError, ContainerLimits
from crewbox.orchestrator.sandbox.recipes import BARE_RECIPE, PROJECT_RECIPE
from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

__all__ = [
    "BARE_RECIPE",
    "PROJECT_RECIPE",
    "ContainerDriver",
    "ContainerError",
    "ContainerLimits",
    "WorkspaceRegistry",
]
