import asyncio
import json
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any

from clinicbook.store.base import Filters, RecordStore, clone, matches_filters

logger = logging.getLogger(__name__)


class JsonFileRecordStore(RecordStore):
    """Local-file mock backend for development.

    Each collection is a JSON array of records in ``<directory>/<collection>.json``,
    loaded on first use and rewritten in full after every write.
    """

    def __init__(self, directory: Path | str) -> None:
        super().__init__()
        self.directory = Path(directory)
        self._cache: dict[str, dict[str, dict[str, Any]]] = {}
        self._file_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _path(self, collection: str) -> Path:
        return self.directory / f"{collection}.json"

    def _read_file(self, collection: str) -> list[dict[str, Any]]:
        path = self._path(collection)
        try:
            with path.open(encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            logger.debug("No local data file for %s at %s", collection, path)
            return []

    def _write_file(self, collection: str, records: list[dict[str, Any]]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(collection)
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, default=str)
        tmp_path.replace(path)
        logger.debug("Saved %d %s record(s) to %s", len(records), collection, path)

    async def _load(self, collection: str) -> dict[str, dict[str, Any]]:
        if collection not in self._cache:
            async with self._file_locks[collection]:
                if collection not in self._cache:
                    records = await asyncio.to_thread(self._read_file, collection)
                    self._cache[collection] = {r["id"]: r for r in records}
        return self._cache[collection]

    async def read_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        record = (await self._load(collection)).get(record_id)
        return clone(record) if record is not None else None

    async def query_records(self, collection: str, filters: Filters | None = None) -> list[dict[str, Any]]:
        records = await self._load(collection)
        return [clone(r) for r in records.values() if matches_filters(r, filters)]

    async def write_record(self, collection: str, record_id: str, record: dict[str, Any]) -> None:
        records = await self._load(collection)
        async with self._file_locks[collection]:
            records[record_id] = clone(record)
            await asyncio.to_thread(self._write_file, collection, list(records.values()))
