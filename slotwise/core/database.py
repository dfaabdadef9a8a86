from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from slotwise.core.config import DATABASE_URL, DB_ECHO

# Base class for models
Base = declarative_base()


def build_engine(url: str = DATABASE_URL, echo: bool = DB_ECHO):
    """Create an async engine for the given URL.

    SQLite connections get foreign keys switched on so that RESTRICT and
    CASCADE rules behave the same way they do on Postgres.
    """
    engine = create_async_engine(url, echo=echo, future=True)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


# Create async engine
engine = build_engine()

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def init_models(bind=None) -> None:
    """Create all tables that do not exist yet."""
    # Models must be imported so their tables are registered on Base.metadata
    import slotwise.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Dependency for FastAPI
async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
