"""Database session factory and schema setup for the embedded SQLite store."""

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import benana.models  # noqa: F401  (registers tables with SQLModel metadata)

logger = structlog.get_logger(__name__)

# Full-text index over prompt + model text, kept in sync by triggers
_FTS_STATEMENTS = (
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS images_fts
    USING fts5(prompt, model_text, content=images, content_rowid=rowid)
    """,
    """
    CREATE TRIGGER IF NOT EXISTS images_ai AFTER INSERT ON images BEGIN
      INSERT INTO images_fts(rowid, prompt, model_text)
      VALUES (new.rowid, new.prompt, COALESCE(new.model_text, ''));
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS images_ad AFTER DELETE ON images BEGIN
      INSERT INTO images_fts(images_fts, rowid, prompt, model_text)
      VALUES ('delete', old.rowid, old.prompt, COALESCE(old.model_text, ''));
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS images_au AFTER UPDATE ON images BEGIN
      INSERT INTO images_fts(images_fts, rowid, prompt, model_text)
      VALUES ('delete', old.rowid, old.prompt, COALESCE(old.model_text, ''));
      INSERT INTO images_fts(rowid, prompt, model_text)
      VALUES (new.rowid, new.prompt, COALESCE(new.model_text, ''));
    END
    """,
)

_INDEX_STATEMENTS = (
    "CREATE INDEX IF NOT EXISTS idx_queue_jobs_status_priority "
    "ON queue_jobs(status, priority DESC, created_at ASC)",
    "CREATE INDEX IF NOT EXISTS idx_usage_log_created_at ON usage_log(created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_images_created_at ON images(created_at DESC)",
)


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_engine(db_url: str) -> AsyncEngine:
    """Create the async engine with per-connection SQLite pragmas.

    Args:
        db_url: SQLite connection URL (sqlite+aiosqlite:///path/to/studio.db)

    Returns:
        Async engine bound to the embedded database
    """
    engine = create_async_engine(
        db_url,
        connect_args={"timeout": 30},
        echo=False,  # Don't log SQL queries (use structlog instead)
    )
    event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
    return engine


def setup_db_session(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        engine: Engine returned by :func:`create_engine`

    Returns:
        Async session factory for creating database sessions
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )


async def init_db(engine: AsyncEngine) -> bool:
    """Create tables, indexes and the full-text index.

    Returns:
        True if the FTS5 index is available, False if search must use LIKE only
    """
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        for statement in _INDEX_STATEMENTS:
            await conn.execute(text(statement))

    try:
        async with engine.begin() as conn:
            for statement in _FTS_STATEMENTS:
                await conn.execute(text(statement))
    except OperationalError as e:
        logger.warning("database.fts_unavailable", error=str(e))
        return False

    return True
