"""Workspace registry -- owns the lifecycle of sandbox instances.

Locking
-------

Two levels of mutual exclusion:

- one ``asyncio.Lock`` per workspace, held for the whole of any operation on
  that workspace (build, rebuild, start, stop, destroy, exec, file I/O), so a
  rebuild can never interleave with a command running in the same sandbox;
- one registry-wide lock, held only while capacity is checked, victims are
  evicted and the target's slot is reserved.

Lock order is always *workspace -> registry*.  Eviction never takes another
workspace's lock; a workspace whose lock is held is busy and is never chosen
as a victim.

Capacity
--------

Before anything that would create or start a container:

1. stop running workspaces idle for longer than ``idle_ttl``;
2. while running (+ building, + starting) >= ``max_running``, stop the least
   recently accessed running workspace;
3. while non-destroyed >= ``max_total``, destroy the least recently accessed
   workspace, volume included.

Building workspaces hold a running slot.  If no victim is available the
operation fails with ``CapacityExceededError``.
"""

from __future__ import annotations

import asyncio
import posixpath
import shlex
import tempfile
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from anyio import to_thread
from loguru import logger

from crewbox.orchestrator.errors import CapacityExceededError, StateConflictError, WorkspaceNotFoundError
from crewbox.orchestrator.models.enums import WorkspaceStatus
from crewbox.orchestrator.models.workspace import (
    ExecResult,
    RebuildResult,
    Workspace,
    WorkspaceTestResult,
)
from crewbox.orchestrator.registry import RequestLedger
from crewbox.orchestrator.sandbox.driver import ContainerDriver, ContainerError
from crewbox.orchestrator.sandbox.recipes import BARE_RECIPE
from crewbox.orchestrator.store.base import RecordStore
from crewbox.orchestrator.utils import new_id, utcnow

if TYPE_CHECKING:
    from crewbox.orchestrator.managers.templates import TemplateCatalog


class WorkspaceRegistry:
    collection = "workspaces"

    def __init__(
        self,
        driver: ContainerDriver,
        templates: TemplateCatalog,
        store: RecordStore,
        *,
        name_prefix: str = "crewbox",
        max_running: int = 5,
        max_total: int = 20,
        idle_ttl: float = 2 * 60 * 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._driver = driver
        self._templates = templates
        self._store = store
        self._prefix = name_prefix
        self.max_running = max_running
        self.max_total = max_total
        self._idle_ttl = timedelta(seconds=idle_ttl)
        self._clock = clock

        self._workspaces: dict[str, Workspace] = {}
        self._lock = asyncio.Lock()
        self._workspace_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._starting: set[str] = set()
        self._ledger = RequestLedger("workspaces")

    @property
    def workdir(self) -> str:
        return self._driver.workdir

    # -- Startup ---------------------------------------------------------------

    async def load(self) -> None:
        """Read persisted workspaces and reconcile them with the engine.

        ``running`` records whose container is gone become ``stopped``;
        ``building`` records were interrupted and become ``failed``.
        """
        records = await self._store.load_all(self.collection, Workspace)
        for ws in records:
            if ws.status == WorkspaceStatus.BUILDING:
                ws = ws.model_copy(
                    update={"status": WorkspaceStatus.FAILED, "build_log": "interrupted build", "container_id": None}
                )
                await self._store.save(self.collection, ws.workspace_id, ws)
            elif ws.status == WorkspaceStatus.RUNNING and not await self._driver.is_running(ws.container_name):
                ws = ws.model_copy(update={"status": WorkspaceStatus.STOPPED})
                await self._store.save(self.collection, ws.workspace_id, ws)
            self._workspaces[ws.workspace_id] = ws
        logger.info(
            "Workspaces: loaded {} record(s), {} running",
            len(self._workspaces),
            self._count(WorkspaceStatus.RUNNING),
        )

    # -- Creation --------------------------------------------------------------

    async def create_from_recipe(
        self,
        name: str,
        recipe: str | None = None,
        *,
        network_enabled: bool = False,
        template_id: str | None = None,
        request_id: str | None = None,
    ) -> Workspace:
        """Provision volume, image and container.

        A build failure is not raised: the returned workspace is ``failed``
        and carries the build log.  A repeated *request_id* returns the
        workspace the first request produced.
        """
        existing = self._ledger.begin(request_id)
        if existing is not None:
            return self.require(existing)
        try:
            ws = await self._create(name, recipe or BARE_RECIPE, network_enabled, template_id)
        except BaseException:
            self._ledger.abandon(request_id)
            raise
        self._ledger.finish(request_id, ws.workspace_id)
        return ws

    async def create_from_template(
        self,
        name: str,
        template_id: str,
        *,
        network_enabled: bool = False,
        request_id: str | None = None,
    ) -> Workspace:
        """Create from a catalog template.  Raises ``TemplateNotFoundError``."""
        template = await self._templates.get(template_id)
        return await self.create_from_recipe(
            name,
            template.recipe,
            network_enabled=network_enabled,
            template_id=template.template_id,
            request_id=request_id,
        )

    async def _create(self, name: str, recipe: str, network_enabled: bool, template_id: str | None) -> Workspace:
        workspace_id = new_id("ws")
        async with self._workspace_locks[workspace_id]:
            async with self._lock:
                try:
                    await self._make_room(workspace_id, running_slot=True, total_slot=True)
                except BaseException:
                    # Nothing was recorded under this id, so nothing else can hold its lock.
                    self._workspace_locks.pop(workspace_id, None)
                    raise
                now = self._clock()
                ws = Workspace(
                    workspace_id=workspace_id,
                    name=name,
                    template_id=template_id,
                    recipe=recipe,
                    image_tag=f"{self._prefix}-img-{workspace_id}",
                    container_name=f"{self._prefix}-{workspace_id}",
                    volume_name=f"{self._prefix}-vol-{workspace_id}",
                    network_enabled=network_enabled,
                    status=WorkspaceStatus.BUILDING,
                    created_at=now,
                    last_accessed_at=now,
                )
                await self._put(ws)
            logger.info("Workspaces: creating {} ({}, network={})", workspace_id, name, network_enabled)

            try:
                await self._driver.create_volume(ws.volume_name)
            except ContainerError as exc:
                return await self._replace(workspace_id, status=WorkspaceStatus.FAILED, build_log=str(exc))
            return await self._build_and_start(ws, seed_volume=False)

    async def _build_and_start(self, ws: Workspace, *, seed_volume: bool) -> Workspace:
        build = await self._driver.build_image(
            ws.recipe,
            ws.image_tag,
            seed_volume=ws.volume_name if seed_volume else None,
        )
        if not build.success:
            logger.warning("Workspaces: build failed for {}", ws.workspace_id)
            return await self._replace(
                ws.workspace_id,
                status=WorkspaceStatus.FAILED,
                image_id=None,
                container_id=None,
                build_log=build.log,
            )

        try:
            container_id = await self._driver.create_container(
                ws.image_tag,
                ws.container_name,
                ws.volume_name,
                network_enabled=ws.network_enabled,
            )
            await self._driver.start_container(ws.container_name)
        except ContainerError as exc:
            logger.warning("Workspaces: container for {} did not start: {}", ws.workspace_id, exc)
            await self._driver.remove_container(ws.container_name)
            return await self._replace(
                ws.workspace_id,
                status=WorkspaceStatus.FAILED,
                image_id=build.image_id,
                container_id=None,
                build_log=f"{build.log}\n{exc}",
            )

        logger.info("Workspaces: {} running (image={})", ws.workspace_id, build.image_id)
        return await self._replace(
            ws.workspace_id,
            status=WorkspaceStatus.RUNNING,
            image_id=build.image_id,
            container_id=container_id,
            build_log=build.log,
            last_accessed_at=self._clock(),
        )

    # -- Query -----------------------------------------------------------------

    async def get(self, workspace_id: str) -> Workspace | None:
        """Return the workspace, touching its access time unless destroyed."""
        ws = self._workspaces.get(workspace_id)
        if ws is None or ws.status == WorkspaceStatus.DESTROYED:
            return ws
        return await self._replace(workspace_id, last_accessed_at=self._clock())

    def require(self, workspace_id: str) -> Workspace:
        """Return the workspace without side effects.  Raises ``WorkspaceNotFoundError``."""
        ws = self._workspaces.get(workspace_id)
        if ws is None:
            raise WorkspaceNotFoundError(workspace_id)
        return ws

    def list(self) -> list[Workspace]:
        """Non-destroyed workspaces, oldest first."""
        live = [ws for ws in self._workspaces.values() if ws.is_live]
        return sorted(live, key=lambda ws: ws.created_at)

    @property
    def running_count(self) -> int:
        return self._count(WorkspaceStatus.RUNNING)

    @property
    def live_count(self) -> int:
        return sum(1 for ws in self._workspaces.values() if ws.is_live)

    # -- Lifecycle -------------------------------------------------------------

    async def update_recipe(self, workspace_id: str, recipe: str) -> Workspace:
        """Replace the stored recipe without rebuilding."""
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            ws = self.require(workspace_id)
            if ws.status == WorkspaceStatus.DESTROYED:
                raise StateConflictError(_blocked(ws, "update its recipe"))
            return await self._replace(workspace_id, recipe=recipe)

    async def rebuild(self, workspace_id: str) -> RebuildResult:
        """Rebuild image and container from the current recipe, keeping the volume."""
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            return await self._rebuild_locked(workspace_id)

    async def _rebuild_locked(self, workspace_id: str) -> RebuildResult:
        ws = self.require(workspace_id)
        if ws.status in (WorkspaceStatus.DESTROYED, WorkspaceStatus.BUILDING):
            raise StateConflictError(_blocked(ws, "rebuild"))

        async with self._lock:
            await self._make_room(
                workspace_id,
                running_slot=ws.status != WorkspaceStatus.RUNNING,
                total_slot=False,
            )
            ws = await self._replace(workspace_id, status=WorkspaceStatus.BUILDING)
        logger.info("Workspaces: rebuilding {}", workspace_id)

        await self._driver.stop_container(ws.container_name)
        await self._driver.remove_container(ws.container_name)
        await self._driver.remove_image(ws.image_tag)
        ws = await self._replace(workspace_id, container_id=None, image_id=None)

        ws = await self._build_and_start(ws, seed_volume=True)
        return RebuildResult(
            success=ws.status == WorkspaceStatus.RUNNING,
            log=ws.build_log or "",
            workspace=ws,
        )

    async def test(self, workspace_id: str, command: str) -> WorkspaceTestResult:
        """Rebuild, then run a verification command in the fresh container."""
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            rebuilt = await self._rebuild_locked(workspace_id)
            if not rebuilt.success:
                return WorkspaceTestResult(build_success=False, build_log=rebuilt.log)
            result = await self._driver.exec(rebuilt.workspace.container_name, command)
        logger.info("Workspaces: verification of {} exited {}", workspace_id, result.code)
        return WorkspaceTestResult(build_success=True, build_log=rebuilt.log, test=result)

    async def ensure_running(self, workspace_id: str) -> Workspace:
        """Start a stopped workspace.  Destroyed, failed or building workspaces are rejected."""
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            return await self._ensure_running_locked(workspace_id)

    start = ensure_running

    async def _ensure_running_locked(self, workspace_id: str) -> Workspace:
        ws = self.require(workspace_id)
        if ws.status == WorkspaceStatus.RUNNING:
            return await self._replace(workspace_id, last_accessed_at=self._clock())
        if ws.status != WorkspaceStatus.STOPPED:
            raise StateConflictError(_blocked(ws, "start"))

        async with self._lock:
            await self._make_room(workspace_id, running_slot=True, total_slot=False)
            self._starting.add(workspace_id)
        try:
            await self._driver.start_container(ws.container_name)
        except ContainerError as exc:
            await self._replace(workspace_id, status=WorkspaceStatus.FAILED, build_log=str(exc))
            msg = f"Workspace '{workspace_id}' could not be started: {exc}"
            raise StateConflictError(msg) from exc
        else:
            logger.info("Workspaces: started {}", workspace_id)
            return await self._replace(workspace_id, status=WorkspaceStatus.RUNNING, last_accessed_at=self._clock())
        finally:
            self._starting.discard(workspace_id)

    async def stop(self, workspace_id: str) -> Workspace:
        """Stop the container.  No-op unless currently running."""
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            ws = self.require(workspace_id)
            if ws.status != WorkspaceStatus.RUNNING:
                return ws
            return await self._stop(ws, reason="requested")

    async def destroy(self, workspace_id: str, *, keep_volume: bool = False) -> Workspace:
        """Tear down container and image (and the volume unless kept).  Terminal."""
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            ws = self.require(workspace_id)
            if ws.status == WorkspaceStatus.DESTROYED:
                return ws
            ws = await self._teardown(ws, keep_volume=keep_volume, reason="requested")
        self._workspace_locks.pop(workspace_id, None)
        return ws

    async def sweep_idle(self) -> int:
        """Stop running workspaces idle past the TTL.  Returns how many were stopped."""
        async with self._lock:
            return await self._stop_idle(exclude=None)

    # -- Exec & files ----------------------------------------------------------

    async def exec(self, workspace_id: str, command: str, *, timeout: float | None = None) -> ExecResult:
        """Run a shell command in the workspace, starting it first if stopped."""
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            ws = await self._ensure_running_locked(workspace_id)
            return await self._driver.exec(ws.container_name, command, timeout=timeout)

    async def write_file(self, workspace_id: str, path: str, content: str) -> str:
        """Write *content* to *path* (relative to the working directory).  Returns the absolute path."""
        target = self.resolve_path(path)
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            ws = await self._ensure_running_locked(workspace_id)
            parent = posixpath.dirname(target)
            mkdir = await self._driver.exec(ws.container_name, f"mkdir -p {shlex.quote(parent)}")
            if not mkdir.ok:
                raise ContainerError("exec mkdir", mkdir)
            with tempfile.TemporaryDirectory(prefix="crewbox-file-") as tmp:
                local = Path(tmp) / "content"
                await to_thread.run_sync(partial(local.write_text, content, encoding="utf-8"))
                await self._driver.copy_to(ws.container_name, local, target)
        logger.debug("Workspaces: wrote {} bytes to {}:{}", len(content), workspace_id, target)
        return target

    async def read_file(self, workspace_id: str, path: str) -> str:
        target = self.resolve_path(path)
        self.require(workspace_id)
        async with self._workspace_locks[workspace_id]:
            ws = await self._ensure_running_locked(workspace_id)
            with tempfile.TemporaryDirectory(prefix="crewbox-file-") as tmp:
                local = Path(tmp) / "content"
                await self._driver.copy_from(ws.container_name, target, local)
                return await to_thread.run_sync(partial(local.read_text, encoding="utf-8", errors="replace"))

    def resolve_path(self, path: str) -> str:
        """Map a relative path to an absolute in-container path under the working directory.

        Raises ``ValueError`` for paths escaping the working directory.
        """
        root = self.workdir.rstrip("/") or "/"
        resolved = posixpath.normpath(posixpath.join(root, path))
        if resolved != root and not resolved.startswith(root.rstrip("/") + "/"):
            msg = f"Path '{path}' escapes the workspace directory {root}"
            raise ValueError(msg)
        if resolved == root:
            msg = f"Path '{path}' does not name a file"
            raise ValueError(msg)
        return resolved

    # -- Capacity (caller holds self._lock) ------------------------------------

    async def _make_room(self, target_id: str, *, running_slot: bool, total_slot: bool) -> None:
        await self._stop_idle(exclude=target_id)

        if running_slot:
            while self._running_slots() >= self.max_running:
                victim = self._lru_victim(target_id, {WorkspaceStatus.RUNNING})
                if victim is None:
                    msg = f"All {self.max_running} running slots are busy"
                    raise CapacityExceededError(msg)
                await self._stop(victim, reason="capacity")

        if total_slot:
            while self.live_count >= self.max_total:
                victim = self._lru_victim(
                    target_id,
                    {WorkspaceStatus.RUNNING, WorkspaceStatus.STOPPED, WorkspaceStatus.FAILED},
                )
                if victim is None:
                    msg = f"Workspace limit of {self.max_total} reached and none can be evicted"
                    raise CapacityExceededError(msg)
                await self._teardown(victim, keep_volume=False, reason="capacity")

    async def _stop_idle(self, exclude: str | None) -> int:
        cutoff = self._clock() - self._idle_ttl
        idle = [
            ws
            for ws in self._workspaces.values()
            if ws.status == WorkspaceStatus.RUNNING
            and ws.workspace_id != exclude
            and ws.last_accessed_at < cutoff
            and not self._busy(ws.workspace_id)
        ]
        for ws in idle:
            await self._stop(ws, reason="idle")
        return len(idle)

    def _running_slots(self) -> int:
        building = self._count(WorkspaceStatus.BUILDING)
        return self._count(WorkspaceStatus.RUNNING) + building + len(self._starting)

    def _lru_victim(self, target_id: str, statuses: set[WorkspaceStatus]) -> Workspace | None:
        candidates = [
            ws
            for ws in self._workspaces.values()
            if ws.status in statuses and ws.workspace_id != target_id and not self._busy(ws.workspace_id)
        ]
        return min(candidates, key=lambda ws: ws.last_accessed_at, default=None)

    def _busy(self, workspace_id: str) -> bool:
        lock = self._workspace_locks.get(workspace_id)
        return lock is not None and lock.locked()

    def _count(self, status: WorkspaceStatus) -> int:
        return sum(1 for ws in self._workspaces.values() if ws.status == status)

    # -- Internal transitions --------------------------------------------------

    async def _stop(self, ws: Workspace, *, reason: str) -> Workspace:
        logger.info("Workspaces: stopping {} ({})", ws.workspace_id, reason)
        await self._driver.stop_container(ws.container_name)
        return await self._replace(ws.workspace_id, status=WorkspaceStatus.STOPPED)

    async def _teardown(self, ws: Workspace, *, keep_volume: bool, reason: str) -> Workspace:
        logger.info("Workspaces: destroying {} ({}, keep_volume={})", ws.workspace_id, reason, keep_volume)
        await self._driver.remove_container(ws.container_name)
        await self._driver.remove_image(ws.image_tag)
        if not keep_volume:
            await self._driver.remove_volume(ws.volume_name)
        return await self._replace(
            ws.workspace_id,
            status=WorkspaceStatus.DESTROYED,
            container_id=None,
            image_id=None,
        )

    async def _replace(self, workspace_id: str, **changes: Any) -> Workspace:
        current = self.require(workspace_id)
        resurrect = changes.get("status") not in (None, WorkspaceStatus.DESTROYED)
        if current.status == WorkspaceStatus.DESTROYED and resurrect:
            # Terminal: nothing brings a destroyed workspace back.
            return current
        updated = current.model_copy(update=changes)
        await self._put(updated)
        return updated

    async def _put(self, ws: Workspace) -> None:
        self._workspaces[ws.workspace_id] = ws
        await self._store.save(self.collection, ws.workspace_id, ws)


def _blocked(ws: Workspace, action: str) -> str:
    reasons = {
        WorkspaceStatus.DESTROYED: "is destroyed",
        WorkspaceStatus.FAILED: "is in a failed state; rebuild it first",
        WorkspaceStatus.BUILDING: "is still building",
        WorkspaceStatus.STOPPED: "is stopped",
        WorkspaceStatus.RUNNING: "is running",
    }
    return f"Cannot {action} workspace '{ws.workspace_id}': it {reasons[ws.status]}"
