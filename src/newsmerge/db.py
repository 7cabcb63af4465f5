"""Database connection and session management."""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from newsmerge.config import settings
from newsmerge.models import Base
from newsmerge.resolution.corpus_index import ensure_corpus_table


def configure_sqlite(async_engine: AsyncEngine) -> None:
    """Apply per-connection SQLite pragmas.

    - foreign_keys: SQLite ignores FK constraints unless asked
    - journal_mode=WAL: scorers read while the writer commits
    - busy_timeout: wait for the write lock instead of failing immediately
    """
    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record):  # pyright: ignore[reportUnusedFunction]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def create_engine(url: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """Create an async engine with the SQLite pragmas applied."""
    async_engine = create_async_engine(
        url or settings.database_url,
        echo=settings.database_echo if echo is None else echo,
    )
    configure_sqlite(async_engine)
    return async_engine


def create_session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = create_engine()

async_session_factory = create_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session_factory() as session:
        yield session


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Initialize database tables and the corpus index."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await ensure_corpus_table(conn)
