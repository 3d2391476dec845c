import logging

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import Settings

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine with the pool limits from settings."""
    pool_options = {}
    if not settings.database_url.startswith("sqlite"):
        pool_options = {
            "pool_size": settings.db_pool_size,
            "pool_timeout": settings.db_pool_timeout,
            "pool_recycle": settings.db_pool_recycle,
        }

    return create_async_engine(
        settings.database_url,
        echo=settings.db_echo,
        pool_pre_ping=True,
        **pool_options,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Dependency for getting DB session
async def get_db(request: Request):
    session_factory = request.app.state.context.session_factory
    async with session_factory() as session:
        yield session


async def create_db_and_tables(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def database_health(engine: AsyncEngine) -> dict:
    """Liveness probe: ask the server for its current time."""
    try:
        async with engine.connect() as conn:
            result = await conn.execute(select(func.now()))
            server_time = result.scalar_one()
        return {"status": "healthy", "timestamp": str(server_time)}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
