'''
Async engine, session factory and transaction helpers for the ledger store.

The engine and factory are built by the app's lifespan. Each request gets
one session from `get_db_session`, committed when the request succeeds.
Work that must succeed or fail as a unit inside that request (one
student's share of a carryover sweep, for example) runs in `savepoint`.
'''
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..common.config import settings
from ..common.logger import log

# Set by the app's lifespan
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None

def create_db_engine_and_session_factory():
    """
    Builds the ledger engine from `settings.database_url`. Sessions do not
    expire on commit so models decoded after a flush stay readable.
    """
    global engine, AsyncSessionLocal

    log.info(f"Creating ledger database engine (test mode: {settings.TEST_MODE}).")
    try:
        engine = create_async_engine(
            settings.database_url,
            echo=False,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
        )
        AsyncSessionLocal = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        log.info("Ledger database engine ready.")
    except Exception as e:
        log.critical(f"Failed to create the ledger database engine: {e}", exc_info=True)
        raise

async def dispose_db_engine():
    global engine, AsyncSessionLocal
    if engine:
        await engine.dispose()
        log.info("Ledger database engine disposed.")
    engine = None
    AsyncSessionLocal = None

async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request: committed after the endpoint returns, rolled
    back if anything raised, always closed.
    """
    if AsyncSessionLocal is None:
        log.error("Session factory missing; the app lifespan has not run.")
        raise RuntimeError("Database session factory is not available.")

    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        log.error(f"Request transaction rolled back: {e}")
        raise
    finally:
        await session.close()

@asynccontextmanager
async def savepoint(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Runs the block inside a SAVEPOINT on `session`.

    If the block raises, only its own writes are rolled back and the
    exception propagates; the session stays usable for the rest of the
    request. Otherwise the savepoint is released into the request's
    transaction, which still commits or rolls back as a whole.
    """
    nested = await session.begin_nested()
    try:
        yield session
    except Exception:
        await nested.rollback()
        log.warning("Rolled back to savepoint.")
        raise
    await nested.commit()
