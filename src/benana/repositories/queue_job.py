"""QueueJob repository.

Status changes made by the scheduler are single-statement conditional UPDATEs so an
interleaved cancel and dispatch can never both win for the same row.
"""

from sqlalchemy import func, literal_column, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from benana.core.timezone import utc_now
from benana.models.queue_job import OPEN_STATUSES, QueueJob, QueueStatus


class QueueJobRepository:
    """Repository for QueueJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: QueueJob) -> QueueJob:
        """Persist a new pending job.

        Args:
            job: QueueJob entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> QueueJob | None:
        result = await self.session.execute(
            select(QueueJob)
            .where(QueueJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 200) -> list[QueueJob]:
        """Retrieve the most recently created jobs, newest first.

        Args:
            limit: Maximum number of jobs (clamped to at least 1)

        Returns:
            List of jobs ordered by created_at DESC
        """
        result = await self.session.execute(
            select(QueueJob)
            .order_by(QueueJob.created_at.desc(), literal_column("queue_jobs.rowid").desc())  # type: ignore[attr-defined]
            .limit(max(1, limit))
        )
        return list(result.scalars().all())

    async def list_open(self) -> list[QueueJob]:
        """Retrieve all pending and running jobs (used for spend reservation)."""
        result = await self.session.execute(
            select(QueueJob).where(QueueJob.status.in_(OPEN_STATUSES))  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: QueueStatus) -> list[QueueJob]:
        result = await self.session.execute(
            select(QueueJob)
            .where(QueueJob.status == status)  # type: ignore[arg-type]
            .order_by(QueueJob.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[QueueStatus, int]:
        result = await self.session.execute(
            select(QueueJob.status, func.count()).group_by(QueueJob.status)  # type: ignore[arg-type]
        )
        return {status: count for status, count in result.all()}

    async def get_next_pending(self) -> QueueJob | None:
        """Retrieve the next job to dispatch.

        Query explanation:
        - WHERE status = 'pending': Only jobs waiting for a slot
        - ORDER BY priority DESC: Higher priority first
        - created_at ASC: FIFO within equal priority
        - rowid ASC: Insertion order when timestamps collide

        Returns:
            The single next pending job, or None if the queue is empty
        """
        result = await self.session.execute(
            select(QueueJob)
            .where(QueueJob.status == QueueStatus.PENDING)  # type: ignore[arg-type]
            .order_by(
                QueueJob.priority.desc(),  # type: ignore[attr-defined]
                QueueJob.created_at.asc(),  # type: ignore[attr-defined]
                literal_column("queue_jobs.rowid").asc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_running(self, job_id: str) -> bool:
        """Claim a pending job for execution.

        Returns:
            True if the job was pending and is now running, False otherwise
        """
        result = await self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status == QueueStatus.PENDING)  # type: ignore[arg-type]
            .values(status=QueueStatus.RUNNING, started_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_completed(self, job_id: str, result_id: str) -> QueueJob:
        """Record the produced image on a running job.

        Raises:
            LookupError: If the job does not exist
            InvalidStateTransition: If the job is not running
        """
        job = await self._require(job_id)
        job.mark_completed(result_id)
        self.session.add(job)
        await self.session.flush()
        return job

    async def mark_failed(self, job_id: str, message: str) -> QueueJob:
        """Record the failure message on a running job.

        Raises:
            LookupError: If the job does not exist
            InvalidStateTransition: If the job is not running
        """
        job = await self._require(job_id)
        job.mark_failed(message)
        self.session.add(job)
        await self.session.flush()
        return job

    async def mark_cancelled(self, job_id: str) -> bool:
        """Cancel a job that has not started yet.

        Returns:
            True if the job was pending and is now cancelled, False otherwise
        """
        result = await self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.status == QueueStatus.PENDING)  # type: ignore[arg-type]
            .values(status=QueueStatus.CANCELLED, completed_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def requeue_running(self) -> int:
        """Reset every job left in running state back to pending.

        Only valid at process startup, before the scheduler dispatches anything.

        Returns:
            Number of jobs requeued
        """
        result = await self.session.execute(
            update(QueueJob)
            .where(QueueJob.status == QueueStatus.RUNNING)  # type: ignore[arg-type]
            .values(
                status=QueueStatus.PENDING,
                started_at=None,
                completed_at=None,
                error=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def _require(self, job_id: str) -> QueueJob:
        job = await self.get_by_id(job_id)
        if job is None:
            raise LookupError(f"Queue job {job_id} not found")
        return job
