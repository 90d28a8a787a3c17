"""Spend limit tests.

Admission is checked against logged spend plus the cost reserved by open jobs.
"""

import pytest

from benana.models.queue_job import QueueJob, QueueStatus
from benana.models.usage_log import UsageLogEntry
from benana.services.config_store import ConfigStore
from benana.services.exceptions import SpendLimitExceededError
from benana.services.spend import (
    COST_4K_USD,
    COST_DEFAULT_USD,
    SpendLimiter,
    check_limit,
    estimate_cost,
    reserved_cost,
)

REQUEST_1K = {"model": "gemini-3-pro-image-preview", "prompt": "p", "resolution": "1K", "batchCount": 1}
REQUEST_4K = {"model": "gemini-3-pro-image-preview", "prompt": "p", "resolution": "4K", "batchCount": 1}


@pytest.fixture
def config_store(paths) -> ConfigStore:
    return ConfigStore(paths)


@pytest.fixture
def spend_limiter(uow_factory, config_store) -> SpendLimiter:
    return SpendLimiter(uow_factory, config_store)


def test_cost_model():
    assert estimate_cost("4K") == COST_4K_USD == 0.24
    assert estimate_cost("2K") == COST_DEFAULT_USD == 0.134
    assert estimate_cost(None) == COST_DEFAULT_USD


def test_reserved_cost_skips_excluded_job():
    jobs = [QueueJob(id="a", request=dict(REQUEST_4K)), QueueJob(id="b", request=dict(REQUEST_1K))]

    assert reserved_cost(jobs) == pytest.approx(0.374)
    assert reserved_cost(jobs, exclude_job_id="a") == pytest.approx(0.134)


def test_check_limit_message_and_shortfall():
    with pytest.raises(SpendLimitExceededError) as exc_info:
        check_limit("Monthly", 1.0, 0.8, 0.134, 0.1)

    error = exc_info.value
    assert error.shortfall == pytest.approx(0.034)
    assert str(error) == (
        "Monthly limit reached: current $0.800, reserved $0.134, planned $0.100, "
        "limit $1.000 (short by $0.034). Adjust the limit in settings."
    )

    check_limit("Monthly", None, 100.0, 100.0, 100.0)
    check_limit("Monthly", 1.0, 0.5, 0.25, 0.25)


@pytest.mark.asyncio
async def test_open_jobs_reserve_budget(spend_limiter, config_store, uow_factory):
    """limit 1.00, spent 0.80, one open job reserving 0.134."""
    config_store.update_config({"monthlySpendLimitUsd": 1.0})
    async with await uow_factory() as uow:
        await uow.usage.add(UsageLogEntry(model="gemini-3-pro-image-preview", cost_estimate=0.8))
        await uow.queue_jobs.add(QueueJob(request=dict(REQUEST_1K)))

    with pytest.raises(SpendLimitExceededError, match="Monthly limit reached"):
        await spend_limiter.assert_within_limits(0.10)

    await spend_limiter.assert_within_limits(0.05)


@pytest.mark.asyncio
async def test_running_job_reservation_can_be_excluded(spend_limiter, config_store, uow_factory):
    config_store.update_config({"totalSpendLimitUsd": 0.3})
    async with await uow_factory() as uow:
        job = await uow.queue_jobs.add(
            QueueJob(request=dict(REQUEST_4K), status=QueueStatus.RUNNING)
        )
        job_id = job.id

    with pytest.raises(SpendLimitExceededError, match="Total limit reached"):
        await spend_limiter.assert_within_limits(0.24)

    await spend_limiter.assert_within_limits(0.24, exclude_job_id=job_id)


@pytest.mark.asyncio
async def test_terminal_jobs_do_not_reserve(spend_limiter, config_store, uow_factory):
    config_store.update_config({"totalSpendLimitUsd": 0.3})
    async with await uow_factory() as uow:
        await uow.queue_jobs.add(QueueJob(request=dict(REQUEST_4K), status=QueueStatus.CANCELLED))
        await uow.queue_jobs.add(QueueJob(request=dict(REQUEST_4K), status=QueueStatus.FAILED))

    await spend_limiter.assert_within_limits(0.24)


@pytest.mark.asyncio
async def test_no_limits_or_zero_cost_always_pass(spend_limiter, config_store, uow_factory):
    async with await uow_factory() as uow:
        await uow.usage.add(UsageLogEntry(model="gemini-3-pro-image-preview", cost_estimate=1000.0))

    await spend_limiter.assert_within_limits(50.0)

    config_store.update_config({"totalSpendLimitUsd": 1.0})
    await spend_limiter.assert_within_limits(0.0)
    with pytest.raises(SpendLimitExceededError):
        await spend_limiter.assert_within_limits(0.01)
