import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from clinicbook.core.errors import ConflictError, Err, Ok, Result
from clinicbook.models.record import Record, _utc_naive_now
from clinicbook.store.base import ConflictPredicate, Filters, RecordStore, matches_filters, normalize_value

logger = logging.getLogger(__name__)

# Filter fields mirrored into indexed columns of the records table
_COLUMN_FIELDS = ("doctor_id", "date")


def _apply_column_filters(stmt, filters: Filters | None):
    for field in _COLUMN_FIELDS:
        condition = (filters or {}).get(field)
        if condition is None:
            continue
        column = getattr(Record, field)
        if not isinstance(condition, dict):
            stmt = stmt.where(column == normalize_value(condition))
            continue
        for op, value in condition.items():
            value = normalize_value(value)
            if op == "eq":
                stmt = stmt.where(column == value)
            elif op == "gte":
                stmt = stmt.where(column >= value)
            elif op == "gt":
                stmt = stmt.where(column > value)
            elif op == "lte":
                stmt = stmt.where(column <= value)
            elif op == "lt":
                stmt = stmt.where(column < value)
            elif op == "in":
                stmt = stmt.where(column.in_(value))
    return stmt


def _to_row(collection: str, record_id: str, record: dict[str, Any]) -> Record:
    return Record(
        collection=collection,
        id=record_id,
        doctor_id=record.get("doctor_id"),
        date=record.get("date"),
        data=record,
    )


class SqlRecordStore(RecordStore):
    """Document store on a single ``records`` table.

    Column-mirrored fields are filtered in SQL; the full filter is then
    re-applied to the decoded documents.
    """

    def __init__(self, engine: AsyncEngine, session_maker: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self.engine = engine
        self.session_maker = session_maker

    async def _select(self, session: AsyncSession, collection: str, filters: Filters | None) -> list[dict[str, Any]]:
        stmt = select(Record).where(Record.collection == collection).order_by(Record.id)
        result = await session.execute(_apply_column_filters(stmt, filters))
        return [row.data for row in result.scalars().all() if matches_filters(row.data, filters)]

    async def read_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        async with self.session_maker() as session:
            row = await session.get(Record, (collection, record_id))
            return dict(row.data) if row is not None else None

    async def query_records(self, collection: str, filters: Filters | None = None) -> list[dict[str, Any]]:
        async with self.session_maker() as session:
            return await self._select(session, collection, filters)

    async def write_record(self, collection: str, record_id: str, record: dict[str, Any]) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                row = await session.get(Record, (collection, record_id))
                if row is None:
                    session.add(_to_row(collection, record_id, record))
                else:
                    row.data = record
                    row.doctor_id = record.get("doctor_id")
                    row.date = record.get("date")
                    row.updated_at = _utc_naive_now()

    async def write_record_if_unconflicted(
        self,
        collection: str,
        record_id: str,
        record: dict[str, Any],
        conflict_predicate: ConflictPredicate,
        scope: Filters | None = None,
    ) -> Result[str]:
        async with self.lock(collection, scope):
            async with self.session_maker() as session:
                async with session.begin():
                    if await session.get(Record, (collection, record_id)) is not None:
                        return Err(ConflictError(f"{collection}/{record_id} already exists"))
                    for existing in await self._select(session, collection, scope):
                        if conflict_predicate(existing):
                            logger.info(
                                "Write to %s/%s rejected: conflicts with %s",
                                collection, record_id, existing.get("id"),
                            )
                            return Err(ConflictError("slot no longer available"))
                    session.add(_to_row(collection, record_id, record))
        return Ok(record_id)

    async def close(self) -> None:
        await self.engine.dispose()
