"""UsageLogEntry entity - append-only billing record."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from benana.core.timezone import utc_now


class UsageLogEntry(SQLModel, table=True):
    """One billable completed generation. Never updated after insert."""

    __tablename__ = "usage_log"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    model: str
    resolution: Optional[str] = Field(default=None)
    cost_estimate: float = Field(default=0.0)
    tokens_in: Optional[int] = Field(default=None)
    tokens_out: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
