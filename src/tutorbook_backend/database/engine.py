'''
Database Engine file.
1- Engine: creates and manages the connection pool
2- AsyncSessionLocal: Session Creator (with engine as bind)
3- get_db_session: Dependency to create, yield and manage the life-cycle of a session.
'''
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker

from ..common.config import settings
from ..common.logger import log

# Created by the app's lifespan.
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None

def create_db_engine_and_session_factory(database_url: str | None = None):
    """
    Creates the engine and session factory.
    Called by the app's lifespan event and by the maintenance scripts.
    """
    global engine, AsyncSessionLocal

    url = database_url or settings.database_url
    log.info("Creating database engine...")
    try:
        engine_kwargs = {"echo": False, "pool_pre_ping": True}
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=5, max_overflow=10, pool_timeout=30)

        engine = create_async_engine(url, **engine_kwargs)

        AsyncSessionLocal = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        log.info("Async database engine and session factory created successfully.")
    except Exception as e:
        log.critical(f"Failed to create async database engine: {e}", exc_info=True)
        raise

async def dispose_db_engine():
    """Disposes of the engine. Called by the app's lifespan."""
    global engine, AsyncSessionLocal
    if engine:
        await engine.dispose()
        log.info("Database engine disposed.")
    engine = None
    AsyncSessionLocal = None

async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    The session is committed when the request succeeds, rolled back when
    anything raises, and always closed.
    """
    if AsyncSessionLocal is None:
        log.error("AsyncSessionLocal is not initialized. App lifespan may not have run.")
        raise RuntimeError("Database session factory is not available.")

    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        log.error(f"Database session rolled back due to error: {e}")
        raise
    finally:
        await session.close()
