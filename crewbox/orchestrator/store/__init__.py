"""Record store implementations for service persistence."""

from crewbox.orchestrator.store.base import RecordStore
from crewbox.orchestrator.store.local import LocalRecordStore, MemoryRecordStore

__all__ = ["LocalRecordStore", "MemoryRecordStore", "RecordStore"]
