import logging

from clinicbook.core.config import Settings
from clinicbook.store.base import RecordStore, matches_filters
from clinicbook.store.json_file import JsonFileRecordStore
from clinicbook.store.memory import MemoryRecordStore
from clinicbook.store.sql import SqlRecordStore

logger = logging.getLogger(__name__)


async def build_store(settings: Settings) -> RecordStore:
    """Create the record store selected by ``settings.store_backend``."""
    backend = settings.store_backend.lower()
    if backend == "memory":
        logger.info("Record store: in-memory")
        return MemoryRecordStore()
    if backend == "file":
        logger.info("Record store: local JSON files in %s", settings.local_db_path)
        return JsonFileRecordStore(settings.local_db_path)
    if backend == "sql":
        if not settings.database_url:
            raise ValueError("DATABASE_URL must be set when STORE_BACKEND=sql")
        from clinicbook.core.db import create_session_maker, init_db

        engine, session_maker = create_session_maker(
            settings.database_url, echo=settings.env == "development"
        )
        if settings.env != "production":
            await init_db(engine)
        logger.info("Record store: SQL (%s)", engine.url.render_as_string(hide_password=True))
        return SqlRecordStore(engine, session_maker)
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")


__all__ = [
    "RecordStore",
    "MemoryRecordStore",
    "JsonFileRecordStore",
    "SqlRecordStore",
    "build_store",
    "matches_filters",
]
