from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class Record(SQLModel, table=True):
    """One document of the SQL-backed record store.

    doctor_id and date are copied out of the document so that availability
    queries can be filtered in SQL; everything else lives in ``data``.
    """

    __tablename__ = "records"
    collection: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    doctor_id: str | None = Field(default=None, index=True)
    date: str | None = Field(default=None, index=True)
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(default_factory=_utc_naive_now)
