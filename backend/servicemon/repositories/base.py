"""Shared plumbing for repositories."""
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import StorageError
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseRepository:
    """Runs units of work in their own session.

    Every operation gets a fresh session so a failed attempt can be retried
    cleanly; SQLAlchemy errors surface as StorageError.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from ..database import async_session
            session_factory = async_session
        self._session_factory = session_factory

    async def _run(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        write: bool = False,
    ) -> T:
        async def attempt() -> T:
            async with self._session_factory() as session:
                result = await operation(session)
                if write:
                    await session.commit()
                return result

        try:
            return await retry_on_lock(attempt)
        except SQLAlchemyError as e:
            raise StorageError(f"{type(self).__name__}: {e}", cause=e) from e
