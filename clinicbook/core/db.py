from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from clinicbook.models.record import Record  # noqa: F401 - register table


def to_async_database_url(database_url: str) -> tuple[str, dict]:
    """Map a plain database URL onto its async driver.

    asyncpg does not accept psycopg params like sslmode/channel_binding, so they are
    stripped and SSL is passed through connect_args instead.
    """
    parsed = urlparse(database_url)
    connect_args: dict = {}
    if parsed.scheme in ("postgresql", "postgres"):
        query = parse_qs(parsed.query, keep_blank_values=True)
        sslmode = query.pop("sslmode", [""])[0]
        query.pop("channel_binding", None)
        if sslmode and sslmode != "disable":
            connect_args["ssl"] = True
        parsed = parsed._replace(scheme="postgresql+asyncpg", query=urlencode(query, doseq=True))
        return urlunparse(parsed), connect_args
    if parsed.scheme == "sqlite":
        return "sqlite+aiosqlite" + database_url[len("sqlite"):], connect_args
    return database_url, connect_args


def create_session_maker(database_url: str, echo: bool = False) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    url, connect_args = to_async_database_url(database_url)
    engine_kwargs: dict = {"echo": echo, "connect_args": connect_args}
    if url.startswith("postgresql"):
        engine_kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    engine = create_async_engine(url, **engine_kwargs)
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    return engine, session_maker


async def init_db(engine: AsyncEngine) -> None:
    """Create tables if using create_all; prefer Alembic in production."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
