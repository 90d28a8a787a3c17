"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from benana.models.queue_job import QueueJob, QueueStatus
from benana.models.usage_log import UsageLogEntry

REQUEST = {"model": "gemini-3-pro-image-preview", "prompt": "a red bicycle", "batchCount": 1}


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    async with await uow_factory() as uow:
        job = await uow.queue_jobs.add(QueueJob(request=dict(REQUEST)))
        job_id = job.id

    async with await uow_factory() as uow:
        found = await uow.queue_jobs.get_by_id(job_id)
        assert found is not None
        assert found.status == QueueStatus.PENDING
        assert found.request["prompt"] == "a red bicycle"


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """An exception rolls back the changes and propagates."""
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            job = await uow.queue_jobs.add(QueueJob(request=dict(REQUEST)))
            job_id = job.id
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.queue_jobs.get_by_id(job_id) is None


@pytest.mark.asyncio
async def test_uow_multiple_repositories_atomic(uow_factory):
    """Writes through different repositories commit or roll back together."""
    async with await uow_factory() as uow:
        job = await uow.queue_jobs.add(QueueJob(request=dict(REQUEST)))
        job_id = job.id

    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            assert await uow.queue_jobs.mark_running(job_id)
            await uow.usage.add(UsageLogEntry(model="gemini-3-pro-image-preview", cost_estimate=0.134))
            raise RuntimeError("crash after both writes")

    async with await uow_factory() as uow:
        job = await uow.queue_jobs.get_by_id(job_id)
        assert job is not None
        assert job.status == QueueStatus.PENDING
        assert await uow.usage.get_session_cost("all") == 0.0
