"""Unit of Work for the studio database.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from benana.repositories.image import ImageRepository
from benana.repositories.project import ProjectRepository
from benana.repositories.prompt_template import PromptTemplateRepository
from benana.repositories.queue_job import QueueJobRepository
from benana.repositories.reference_image import ReferenceImageRepository
from benana.repositories.usage_log import UsageLogRepository

logger = structlog.get_logger(__name__)


class UnitOfWork:
    """Unit of Work pattern implementation.

    Use as async context manager for automatic commit/rollback. Keep units short:
    never hold one open across a network call.

    Example:
        async with await uow_factory() as uow:
            job = await uow.queue_jobs.get_next_pending()
            claimed = await uow.queue_jobs.mark_running(job.id)
            # Automatically commits on successful exit
            # Automatically rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.queue_jobs = QueueJobRepository(session)
        self.images = ImageRepository(session)
        self.reference_images = ReferenceImageRepository(session)
        self.usage = UsageLogRepository(session)
        self.projects = ProjectRepository(session)
        self.prompts = PromptTemplateRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on success, roll back on exception, then close the session.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


UowFactory = Callable[[], Awaitable[UnitOfWork]]


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]) -> UowFactory:
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(engine)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.queue_jobs.add(job)
    """

    async def _create_uow():
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
