import logging

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine

from app.cache.layer import CacheLayer
from app.core.config import Settings
from app.database import create_db_and_tables, create_engine, create_session_factory
from app.repositories.task_repository import STORE_FAILURES

logger = logging.getLogger(__name__)


class AppContext:
    """
    Process-wide resources shared by every request: the database engine with
    its session factory, and the cache layer.

    Pass an engine or a Redis client to reuse existing ones (tests inject an
    in-memory database and a stub client this way).
    """

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine | None = None,
        cache_client: Redis | None = None,
    ):
        self.settings = settings
        self.engine = engine
        self.session_factory = None
        self.cache = CacheLayer(settings, client=cache_client)

    async def startup(self):
        if self.engine is None:
            self.engine = create_engine(self.settings)
        self.session_factory = create_session_factory(self.engine)

        if self.settings.create_tables:
            try:
                await create_db_and_tables(self.engine)
            except STORE_FAILURES as e:
                logger.error(f"Could not create tables, database unreachable: {e}")

        await self.cache.init_cache()

    async def shutdown(self):
        await self.cache.close()
        if self.engine is not None:
            await self.engine.dispose()
