"""Cost model and spend-limit admission control."""

from typing import Optional

import structlog

from benana.models.generation_request import Resolution
from benana.models.queue_job import QueueJob
from benana.services.config_store import ConfigStore
from benana.services.exceptions import SpendLimitExceededError
from benana.uow import UowFactory

logger = structlog.get_logger(__name__)

COST_4K_USD = 0.24
COST_DEFAULT_USD = 0.134


def estimate_cost(resolution: Optional[Resolution | str]) -> float:
    """Estimated USD cost of one generation at the given resolution."""
    if resolution == Resolution.R4K.value:
        return COST_4K_USD
    return COST_DEFAULT_USD


def reserved_cost(open_jobs: list[QueueJob], exclude_job_id: Optional[str] = None) -> float:
    """Cost reserved by open jobs, estimated from each stored request's resolution."""
    return sum(
        estimate_cost(job.request.get("resolution"))
        for job in open_jobs
        if job.id != exclude_job_id
    )


def check_limit(
    limit_name: str,
    limit: Optional[float],
    current_spend: float,
    reserved_spend: float,
    additional_cost: float,
) -> None:
    """Raise if ``current + reserved + additional`` would exceed ``limit``.

    Raises:
        SpendLimitExceededError: If the projected spend is above the limit
    """
    if limit is None:
        return
    if current_spend + reserved_spend + additional_cost <= limit:
        return
    raise SpendLimitExceededError(
        limit_name=limit_name,
        limit=limit,
        current_spend=current_spend,
        reserved_spend=reserved_spend,
        additional_cost=additional_cost,
    )


class SpendLimiter:
    """Checks monthly and total ceilings against logged and reserved spend.

    Reserved spend is recomputed from the open queue rows on every call.
    """

    def __init__(self, uow_factory: UowFactory, config_store: ConfigStore):
        self.uow_factory = uow_factory
        self.config_store = config_store

    async def assert_within_limits(
        self, additional_cost: float, exclude_job_id: Optional[str] = None
    ) -> None:
        """Admit ``additional_cost`` or raise.

        Args:
            additional_cost: Cost about to be added (zero or negative always passes)
            exclude_job_id: Open job whose reservation is about to be consumed

        Raises:
            SpendLimitExceededError: If the monthly or total limit would be exceeded
        """
        if additional_cost <= 0:
            return

        config = self.config_store.get_public_config()
        if config.monthly_spend_limit_usd is None and config.total_spend_limit_usd is None:
            return

        async with await self.uow_factory() as uow:
            open_jobs = await uow.queue_jobs.list_open()
            monthly_spend = await uow.usage.get_session_cost("month")
            total_spend = await uow.usage.get_session_cost("all")

        reserved = reserved_cost(open_jobs, exclude_job_id)

        try:
            check_limit(
                "Monthly", config.monthly_spend_limit_usd, monthly_spend, reserved, additional_cost
            )
            check_limit("Total", config.total_spend_limit_usd, total_spend, reserved, additional_cost)
        except SpendLimitExceededError as e:
            logger.warning(
                "spend.limit_exceeded",
                limit_name=e.limit_name,
                limit=e.limit,
                current_spend=e.current_spend,
                reserved_spend=e.reserved_spend,
                additional_cost=e.additional_cost,
            )
            raise
