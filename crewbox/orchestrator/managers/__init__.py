"""Keyed, persisted collections owned by the orchestrator.

Each manager holds its authoritative map in memory, guards it with its own
lock and writes through to a ``RecordStore``.  Managers raise domain
exceptions (``NotFoundError``, ``ValueError``), never HTTP exceptions --
that translation is the app's responsibility.
"""

from crewbox.orchestrator.managers.projects import ProjectStore
from crewbox.orchestrator.managers.templates import TemplateCatalog
from crewbox.orchestrator.managers.tools import ToolCatalog

__all__ = ["ProjectStore", "TemplateCatalog", "ToolCatalog"]
