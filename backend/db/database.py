from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import settings

DATABASE_URL = settings.database_url


class Base(DeclarativeBase):
    pass


def build_engine(url: str = DATABASE_URL, echo: bool = settings.database_echo) -> AsyncEngine:
    """Create an async engine; SQLite gets WAL, foreign keys and a busy timeout."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["timeout"] = 30

    eng = create_async_engine(url, echo=echo, connect_args=connect_args, pool_pre_ping=True)

    if url.startswith("sqlite"):
        @event.listens_for(eng.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return eng


def build_session_maker(eng: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(eng, expire_on_commit=False)


engine = build_engine()
async_session_maker = build_session_maker(engine)


def _import_models() -> None:
    # Register every table on Base.metadata
    from db import action_log, users, warehouse  # noqa: F401
    from db.inventory import stock, transfer  # noqa: F401


async def create_db_and_tables(eng: AsyncEngine = engine):
    _import_models()
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
