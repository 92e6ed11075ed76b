"""Custom tool catalog: reusable scripts keyed by id.

A tool is independent of any workspace.  Running it means shipping the
script to a workspace and invoking the interpreter its runtime tag names;
the workspace image must provide that interpreter.
"""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

from crewbox.orchestrator.errors import CustomToolNotFoundError
from crewbox.orchestrator.models.catalog import CustomTool
from crewbox.orchestrator.models.enums import ToolRuntime
from crewbox.orchestrator.store.base import RecordStore
from crewbox.orchestrator.utils import new_id, utcnow

if TYPE_CHECKING:
    from crewbox.orchestrator.models.workspace import ExecResult
    from crewbox.orchestrator.sandbox.workspaces import WorkspaceRegistry

INTERPRETERS: dict[ToolRuntime, str] = {
    ToolRuntime.SHELL: "sh",
    ToolRuntime.PYTHON: "python3",
    ToolRuntime.NODE: "node",
}

SCRIPT_DIR = ".crewbox/tools"
"""Where tool scripts are written, relative to the workspace working directory."""

_UPDATABLE = frozenset({"name", "description", "script", "runtime"})
_SUFFIXES = {ToolRuntime.SHELL: ".sh", ToolRuntime.PYTHON: ".py", ToolRuntime.NODE: ".js"}


def script_path(tool: CustomTool) -> str:
    return f"{SCRIPT_DIR}/{tool.tool_id}{_SUFFIXES[tool.runtime]}"


def script_command(tool: CustomTool) -> str:
    """Shell command that runs an already-written tool script."""
    return f"{INTERPRETERS[tool.runtime]} {shlex.quote(script_path(tool))}"


class ToolCatalog:
    collection = "tools"

    def __init__(self, store: RecordStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._tools: dict[str, CustomTool] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        records = await self._store.load_all(self.collection, CustomTool)
        self._tools = {t.tool_id: t for t in records}
        logger.info("Tools: loaded {} custom tool(s)", len(self._tools))

    # -- Mutation --------------------------------------------------------------

    async def create(
        self,
        name: str,
        script: str,
        *,
        description: str = "",
        runtime: ToolRuntime = ToolRuntime.SHELL,
    ) -> CustomTool:
        tool = CustomTool(
            tool_id=new_id("tool"),
            name=name,
            description=description,
            script=script,
            runtime=runtime,
            created_at=self._clock(),
        )
        async with self._lock:
            self._tools[tool.tool_id] = tool
            await self._store.save(self.collection, tool.tool_id, tool)
        logger.info("Tools: created {} ({}, runtime={})", tool.tool_id, name, runtime)
        return tool

    async def update(self, tool_id: str, changes: dict[str, Any]) -> CustomTool:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            msg = f"Cannot update tool field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        async with self._lock:
            # Round-trip through validation so a runtime given as a plain string is coerced.
            merged = {**self._require(tool_id).model_dump(), **changes}
            updated = CustomTool.model_validate(merged)
            self._tools[tool_id] = updated
            await self._store.save(self.collection, tool_id, updated)
        logger.info("Tools: updated {}", tool_id)
        return updated

    async def delete(self, tool_id: str) -> None:
        async with self._lock:
            self._require(tool_id)
            del self._tools[tool_id]
            await self._store.delete(self.collection, tool_id)
        logger.info("Tools: deleted {}", tool_id)

    # -- Query -----------------------------------------------------------------

    def get(self, tool_id: str) -> CustomTool:
        """Raises ``CustomToolNotFoundError`` if missing."""
        return self._require(tool_id)

    def list(self) -> list[CustomTool]:
        return sorted(self._tools.values(), key=lambda t: t.created_at)

    def _require(self, tool_id: str) -> CustomTool:
        tool = self._tools.get(tool_id)
        if tool is None:
            raise CustomToolNotFoundError(tool_id)
        return tool

    # -- Execution -------------------------------------------------------------

    async def run(self, tool_id: str, workspace_id: str, workspaces: WorkspaceRegistry) -> ExecResult:
        """Write the tool's script into a workspace and execute it there."""
        tool = self._require(tool_id)
        await workspaces.write_file(workspace_id, script_path(tool), tool.script)
        logger.info("Tools: running {} in workspace {}", tool_id, workspace_id)
        return await workspaces.exec(workspace_id, script_command(tool))
