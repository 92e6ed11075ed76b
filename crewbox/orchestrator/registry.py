"""In-process run registry and request ledger.

Both are ephemeral -- empty on process restart.  Durable state lives in the
record store owned by each service.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from crewbox.orchestrator.errors import DuplicateRequestError, DuplicateRunError, ShuttingDownError

if TYPE_CHECKING:
    from crewbox.orchestrator.context import TaskRun


class RunRegistry:
    """Registry of currently executing task runs.

    At most one run may exist per (project, sprint, task).  The registry also
    provides a drain mechanism for graceful shutdown: ``wait_until_drained``
    blocks until all runs have been unregistered.
    """

    def __init__(self) -> None:
        self._runs: dict[tuple[str, str, str], TaskRun] = {}
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (no runs).
        self._shutting_down = False

    # -- Mutation --------------------------------------------------------------

    def register(self, run: TaskRun) -> None:
        """Register a run.

        Raises ``ShuttingDownError`` during shutdown and ``DuplicateRunError``
        if the same task is already executing.
        """
        if self._shutting_down:
            raise ShuttingDownError
        if run.key in self._runs:
            msg = f"Task '{run.task_id}' is already running"
            raise DuplicateRunError(msg)
        logger.debug("Registry: register run {} (task={}, workspace={})", run.run_id, run.task_id, run.workspace_id)
        self._runs[run.key] = run
        self._drain_event.clear()

    def unregister(self, run: TaskRun) -> TaskRun | None:
        current = self._runs.get(run.key)
        if current is not None and current.run_id == run.run_id:
            del self._runs[run.key]
            logger.debug("Registry: unregister run {}", run.run_id)
        else:
            current = None
        if not self._runs:
            self._drain_event.set()
        return current

    # -- Query -----------------------------------------------------------------

    def is_running(self, project_id: str, sprint_id: str, task_id: str) -> bool:
        return (project_id, sprint_id, task_id) in self._runs

    def by_project(self, project_id: str) -> list[TaskRun]:
        """Return all active runs belonging to a project."""
        return [r for r in self._runs.values() if r.project_id == project_id]

    def all_runs(self) -> list[TaskRun]:
        """Return a snapshot of all active runs."""
        return list(self._runs.values())

    @property
    def active_count(self) -> int:
        return len(self._runs)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New registrations are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new task runs")
        if not self._runs:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until all runs have been unregistered (drained).

        Returns ``True`` if the registry is empty, ``False`` if *timeout*
        expired with runs still active.
        """
        if not self._runs:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Registry: drain timed out after {}s with {} runs still active",
                timeout,
                len(self._runs),
            )
            return False
        else:
            return True


class RequestLedger:
    """Maps caller-supplied request ids to the entity each one produced.

    Usage from a service::

        existing = ledger.begin(request_id)
        if existing is not None:
            return self.get(existing)       # repeated request: no-op
        try:
            entity = ...                    # side effects
        except BaseException:
            ledger.abandon(request_id)      # let the caller retry
            raise
        ledger.finish(request_id, entity.id)

    A request id that is still in flight is rejected with
    ``DuplicateRequestError``.  ``None`` request ids are never tracked.
    """

    def __init__(self, scope: str) -> None:
        self.scope = scope
        self._completed: dict[str, str] = {}
        self._in_flight: set[str] = set()

    def begin(self, request_id: str | None) -> str | None:
        """Claim *request_id*.  Returns the entity id of a completed repeat."""
        if request_id is None:
            return None
        if request_id in self._completed:
            logger.debug("Ledger[{}]: repeated request {}", self.scope, request_id)
            return self._completed[request_id]
        if request_id in self._in_flight:
            msg = f"Request '{request_id}' is already in progress"
            raise DuplicateRequestError(msg)
        self._in_flight.add(request_id)
        return None

    def finish(self, request_id: str | None, entity_id: str) -> None:
        if request_id is None:
            return
        self._in_flight.discard(request_id)
        self._completed[request_id] = entity_id

    def abandon(self, request_id: str | None) -> None:
        if request_id is not None:
            self._in_flight.discard(request_id)

