"""Workspace data model.

A workspace is a disposable sandbox: one container plus one persistent
volume plus one image built from a recipe (Dockerfile text).  The container
and image are replaceable; the volume is the only state that may survive a
rebuild, or a destroy when explicitly preserved.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from crewbox.orchestrator.models.enums import WorkspaceStatus


class Workspace(BaseModel):
    """Workspace record as held by the registry and persisted to the store."""

    workspace_id: str
    name: str
    template_id: str | None = None
    recipe: str = Field(description="Dockerfile content the image is built from")
    image_tag: str
    image_id: str | None = None
    container_id: str | None = None
    container_name: str
    volume_name: str
    network_enabled: bool = False
    status: WorkspaceStatus
    build_log: str | None = None
    created_at: datetime
    last_accessed_at: datetime

    @property
    def is_live(self) -> bool:
        return self.status != WorkspaceStatus.DESTROYED


class ExecResult(BaseModel):
    """Outcome of a command run inside a container.

    A non-zero ``code`` is data, not an error: timeouts and output overflow
    are reported here too.
    """

    stdout: str = ""
    stderr: str = ""
    code: int = 0

    @property
    def ok(self) -> bool:
        return self.code == 0

    def render(self) -> str:
        """Flatten into the single string shown to a language model."""
        output = self.stdout
        if self.stderr:
            output += ("\n" if output else "") + f"[stderr] {self.stderr}"
        if self.code != 0:
            output += ("\n" if output else "") + f"[exit code: {self.code}]"
        return output or "(no output)"


class BuildResult(BaseModel):
    """Outcome of an image build.  Failure is reported, never raised."""

    success: bool
    image_id: str | None = None
    log: str = ""


class RebuildResult(BaseModel):
    success: bool
    log: str
    workspace: Workspace


class WorkspaceTestResult(BaseModel):
    """Outcome of rebuild-then-verify."""

    build_success: bool
    build_log: str
    test: ExecResult | None = Field(default=None, description="None when the build failed")

    @computed_field
    @property
    def passed(self) -> bool:
        return self.build_success and self.test is not None and self.test.ok
