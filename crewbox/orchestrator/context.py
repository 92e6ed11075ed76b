"""Task run context.

A ``TaskRun`` is the in-flight bookkeeping for one task executing against a
workspace.  It is created by the project coordinator when a task is
dispatched, registered in the ``RunRegistry`` for duplicate detection and
shutdown drain, and discarded once the outcome is written back to the
project store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass
class TaskRun:
    """In-flight state for a single task execution."""

    # -- Identity --------------------------------------------------------------
    run_id: str
    project_id: str
    sprint_id: str
    task_id: str

    # -- Binding ---------------------------------------------------------------
    member_id: str
    workspace_id: str

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity of the work item; at most one run per key at a time."""
        return (self.project_id, self.sprint_id, self.task_id)
