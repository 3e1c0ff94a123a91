"""Persistence interface consumed by the scheduling services.

Records are plain JSON-compatible dicts keyed by ``(collection, id)``. The
services parse them into models on read; stores never interpret them beyond
the fields named in a filter.
"""
import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import date, time
from enum import Enum
from typing import Any

from clinicbook.core.errors import ConflictError, Err, Ok, Result

logger = logging.getLogger(__name__)

Filters = dict[str, Any]
ConflictPredicate = Callable[[dict[str, Any]], bool]

_OPERATORS = {
    "eq": lambda a, b: a == b,
    "ne": lambda a, b: a != b,
    "gt": lambda a, b: a is not None and a > b,
    "gte": lambda a, b: a is not None and a >= b,
    "lt": lambda a, b: a is not None and a < b,
    "lte": lambda a, b: a is not None and a <= b,
    "in": lambda a, b: a in b,
}


def normalize_value(value: Any) -> Any:
    """Bring filter values into the shape they have inside stored records."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_value(v) for v in value]
    return value


def matches_filters(record: dict[str, Any], filters: Filters | None) -> bool:
    """Equality on plain values; {"op": value} dicts for gt/gte/lt/lte/ne/in."""
    for field, condition in (filters or {}).items():
        actual = record.get(field)
        if isinstance(condition, dict):
            for op, expected in condition.items():
                if op not in _OPERATORS:
                    raise ValueError(f"Unsupported filter operator: {op}")
                if not _OPERATORS[op](actual, normalize_value(expected)):
                    return False
        elif actual != normalize_value(condition):
            return False
    return True


def _scope_key(collection: str, scope: Filters | None) -> tuple:
    items = sorted((k, repr(normalize_value(v))) for k, v in (scope or {}).items())
    return (collection, tuple(items))


class _ScopeLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        # Holders plus waiters
        self.users = 0


class RecordStore(ABC):
    """Key-indexed document store with one compare-and-write primitive.

    ``write_record_if_unconflicted`` holds a lock keyed on its scope across the
    conflict scan and the write, so two writers racing on the same scope are
    serialized and the loser sees the winner's record.
    """

    def __init__(self) -> None:
        self._scope_locks: dict[tuple, _ScopeLock] = {}

    @asynccontextmanager
    async def lock(self, collection: str, scope: Filters | None) -> AsyncIterator[None]:
        """Hold the lock for ``scope``; its entry is dropped once nobody holds or awaits it."""
        key = _scope_key(collection, scope)
        entry = self._scope_locks.get(key)
        if entry is None:
            entry = self._scope_locks[key] = _ScopeLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._scope_locks[key]

    @abstractmethod
    async def read_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def query_records(self, collection: str, filters: Filters | None = None) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def write_record(self, collection: str, record_id: str, record: dict[str, Any]) -> None:
        """Plain upsert, for writes nobody races on (schedule edits, status changes)."""

    async def write_record_if_unconflicted(
        self,
        collection: str,
        record_id: str,
        record: dict[str, Any],
        conflict_predicate: ConflictPredicate,
        scope: Filters | None = None,
    ) -> Result[str]:
        """Create ``record`` unless an existing record in ``scope`` matches the predicate."""
        async with self.lock(collection, scope):
            if await self.read_record(collection, record_id) is not None:
                return Err(ConflictError(f"{collection}/{record_id} already exists"))
            for existing in await self.query_records(collection, scope):
                if conflict_predicate(existing):
                    logger.info(
                        "Write to %s/%s rejected: conflicts with %s",
                        collection, record_id, existing.get("id"),
                    )
                    return Err(ConflictError("slot no longer available"))
            await self.write_record(collection, record_id, record)
        return Ok(record_id)

    async def close(self) -> None:
        """Release backend resources; no-op unless overridden."""


def clone(record: dict[str, Any]) -> dict[str, Any]:
    return copy.deepcopy(record)
