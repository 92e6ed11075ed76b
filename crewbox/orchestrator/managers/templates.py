"""Template catalog: named, reusable build recipes.

Holds the authoritative map in memory and writes through to the record
store after every mutation.  Templates are reference snapshots -- deleting
one never touches workspaces that were built from it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

from loguru import logger

from crewbox.orchestrator.errors import TemplateNotFoundError
from crewbox.orchestrator.models.catalog import Template
from crewbox.orchestrator.models.workspace import Workspace
from crewbox.orchestrator.store.base import RecordStore
from crewbox.orchestrator.utils import new_id, utcnow

_UPDATABLE = frozenset({"name", "description", "recipe", "test_command"})


class TemplateCatalog:
    collection = "templates"

    def __init__(self, store: RecordStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._templates: dict[str, Template] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Read persisted templates into memory.  Called once at startup."""
        records = await self._store.load_all(self.collection, Template)
        self._templates = {t.template_id: t for t in records}
        logger.info("Templates: loaded {} template(s)", len(self._templates))

    # -- Mutation --------------------------------------------------------------

    async def create(
        self,
        name: str,
        recipe: str,
        *,
        description: str = "",
        test_command: str | None = None,
    ) -> Template:
        now = self._clock()
        template = Template(
            template_id=new_id("tpl"),
            name=name,
            description=description,
            recipe=recipe,
            test_command=test_command,
            created_at=now,
            last_used_at=now,
        )
        async with self._lock:
            self._templates[template.template_id] = template
            await self._store.save(self.collection, template.template_id, template)
        logger.info("Templates: created {} ({})", template.template_id, name)
        return template

    async def create_from_workspace(
        self,
        workspace: Workspace,
        name: str,
        *,
        description: str = "",
        test_command: str | None = None,
    ) -> Template:
        """Snapshot a workspace's current recipe as a new template."""
        return await self.create(name, workspace.recipe, description=description, test_command=test_command)

    async def update(self, template_id: str, changes: dict[str, Any]) -> Template:
        """Apply a partial update.  Unknown keys and invalid values raise ``ValueError``."""
        unknown = set(changes) - _UPDATABLE
        if unknown:
            msg = f"Cannot update template field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        async with self._lock:
            current = self._require(template_id)
            updated = Template.model_validate({**current.model_dump(), **changes, "last_used_at": self._clock()})
            self._templates[template_id] = updated
            await self._store.save(self.collection, template_id, updated)
        logger.info("Templates: updated {} ({})", template_id, ", ".join(sorted(changes)) or "touch")
        return updated

    async def delete(self, template_id: str) -> None:
        async with self._lock:
            self._require(template_id)
            del self._templates[template_id]
            await self._store.delete(self.collection, template_id)
        logger.info("Templates: deleted {}", template_id)

    # -- Query -----------------------------------------------------------------

    async def get(self, template_id: str) -> Template:
        """Return a template and mark it as used.  Raises ``TemplateNotFoundError``."""
        async with self._lock:
            touched = self._require(template_id).model_copy(update={"last_used_at": self._clock()})
            self._templates[template_id] = touched
            await self._store.save(self.collection, template_id, touched)
        return touched

    def find_by_name(self, name: str) -> Template | None:
        return next((t for t in self._templates.values() if t.name == name), None)

    def list(self) -> list[Template]:
        return sorted(self._templates.values(), key=lambda t: t.created_at)

    def _require(self, template_id: str) -> Template:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template
