"""Catalog entries: reusable build recipes and reusable scripts.

Both are reference snapshots.  Nothing else points at them by identity after
use, so deleting an entry never affects workspaces built from it.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from crewbox.orchestrator.models.enums import ToolRuntime


class Template(BaseModel):
    """A named, reusable build recipe."""

    template_id: str
    name: str
    description: str = ""
    recipe: str
    test_command: str | None = None
    created_at: datetime
    last_used_at: datetime


class CustomTool(BaseModel):
    """A reusable script runnable in any workspace that provides its runtime."""

    tool_id: str
    name: str
    description: str = ""
    script: str
    runtime: ToolRuntime = ToolRuntime.SHELL
    created_at: datetime
