"""Record store interface for service persistence.

Each service (workspace registry, catalogs, project store) owns one
collection of small pydantic records keyed by id.  The service keeps the
authoritative copy in memory and writes through to the store after every
mutation; the store is only read back at startup.

The interface is async so that file I/O never blocks the event loop.
"""

from __future__ import annotations

from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

RecordT = TypeVar("RecordT", bound=BaseModel)


@runtime_checkable
class RecordStore(Protocol):
    """Async protocol for persisting keyed pydantic records.

    Storage layout (keyed by collection and record id)::

        {root}/{collection}/{record_id}.json
    """

    async def save(self, collection: str, record_id: str, record: BaseModel) -> None:
        """Write (create or replace) a record."""
        ...

    async def load_all(self, collection: str, model: type[RecordT]) -> list[RecordT]:
        """Read every record of a collection.  Missing collection -> empty list."""
        ...

    async def delete(self, collection: str, record_id: str) -> None:
        """Delete a record.  No-op if not found."""
        ...
