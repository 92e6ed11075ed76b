"""Domain exceptions shared by the orchestrator services.

Services raise these, never HTTP exceptions -- translation to status codes
happens once, in the app's exception handlers.
"""

from __future__ import annotations


class NotFoundError(LookupError):
    """An id does not resolve to a known entity."""

    kind = "entity"

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"{self.kind.capitalize()} '{entity_id}' not found")


class WorkspaceNotFoundError(NotFoundError):
    kind = "workspace"


class TemplateNotFoundError(NotFoundError):
    kind = "template"


class CustomToolNotFoundError(NotFoundError):
    kind = "tool"


class ProjectNotFoundError(NotFoundError):
    kind = "project"


class SprintNotFoundError(NotFoundError):
    kind = "sprint"


class TaskNotFoundError(NotFoundError):
    kind = "task"


class MemberNotFoundError(NotFoundError):
    kind = "team member"


class StateConflictError(RuntimeError):
    """The entity exists but its current state does not allow the operation."""


class CapacityExceededError(StateConflictError):
    """No workspace slot could be freed for a new or restarted container."""


class PlanParseError(ValueError):
    """A planning response did not contain the expected JSON shape.

    ``raw_response`` holds the unmodified model output for diagnosis.
    """

    def __init__(self, message: str, raw_response: str) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class DuplicateRequestError(ValueError):
    """A request id is already being processed."""


class DuplicateRunError(DuplicateRequestError):
    """The same task is already executing."""


class ShuttingDownError(RuntimeError):
    """Raised when attempting to start a run during shutdown."""
