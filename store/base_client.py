from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker


class BaseDBClient:
    """
    Shared plumbing for the store clients. Every public method is its own
    session and its own round trip; nothing spans calls.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.async_session = session_factory

    async def _scalar(self, query) -> Optional[Any]:
        async with self.async_session() as session:
            result = await session.execute(query)
            return result.scalars().first()

    async def _scalars(self, query) -> List[Any]:
        async with self.async_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def _execute(self, statement) -> int:
        """Runs a write statement and returns the number of affected rows."""
        async with self.async_session() as session:
            try:
                result = await session.execute(statement)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            return result.rowcount

    async def _add(self, instance):
        async with self.async_session() as session:
            session.add(instance)
            try:
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            await session.refresh(instance)
            return instance
