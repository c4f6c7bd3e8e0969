import logging
import os
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from store.tables import Base

logger = logging.getLogger("automation_engine")

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///automation.db"


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    return create_async_engine(url, echo=echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Rows are converted to pydantic records before the session closes
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_schema(engine: AsyncEngine) -> None:
    """Creates missing tables. Production schemas are migrated by the CRM backend."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Automation schema ready.")
