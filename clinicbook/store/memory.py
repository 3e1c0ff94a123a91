from collections import defaultdict
from typing import Any

from clinicbook.store.base import Filters, RecordStore, clone, matches_filters


class MemoryRecordStore(RecordStore):
    """Process-local store; every read and write copies so callers never share state."""

    def __init__(self, seed: dict[str, list[dict[str, Any]]] | None = None) -> None:
        super().__init__()
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        for collection, records in (seed or {}).items():
            for record in records:
                self._collections[collection][record["id"]] = clone(record)

    async def read_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        record = self._collections[collection].get(record_id)
        return clone(record) if record is not None else None

    async def query_records(self, collection: str, filters: Filters | None = None) -> list[dict[str, Any]]:
        return [
            clone(record)
            for record in self._collections[collection].values()
            if matches_filters(record, filters)
        ]

    async def write_record(self, collection: str, record_id: str, record: dict[str, Any]) -> None:
        self._collections[collection][record_id] = clone(record)
