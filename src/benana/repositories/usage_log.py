"""UsageLogEntry repository with windowed spend aggregation."""

import calendar
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from benana.core.timezone import utc_now
from benana.models.usage_log import UsageLogEntry

CostWindow = Literal["day", "month", "all"]


def one_month_before(moment: datetime) -> datetime:
    """Same instant one calendar month earlier, clamping the day (Mar 31 -> Feb 28/29)."""
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def window_start(window: CostWindow, now: datetime | None = None) -> datetime | None:
    """Lower bound of a cost window, or None for ``all``.

    Raises:
        ValueError: If the window name is unknown
    """
    now = now or utc_now()
    if window == "day":
        return now - timedelta(days=1)
    if window == "month":
        return one_month_before(now)
    if window == "all":
        return None
    raise ValueError(f"Unknown cost window: {window}")


class UsageLogRepository:
    """Repository for UsageLogEntry entities (append-only)."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, entry: UsageLogEntry) -> UsageLogEntry:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_session_cost(self, window: CostWindow = "day") -> float:
        """Sum of cost estimates logged within the window.

        Args:
            window: ``day`` (last 24h), ``month`` (last calendar month) or ``all``

        Returns:
            Total cost in USD (0.0 when nothing was logged)
        """
        start = window_start(window)
        query = select(func.coalesce(func.sum(UsageLogEntry.cost_estimate), 0.0))
        if start is not None:
            query = query.where(UsageLogEntry.created_at >= start)  # type: ignore[operator]
        result = await self.session.execute(query)
        return float(result.scalar_one())
