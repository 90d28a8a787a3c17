"""QueueJob entity - one unit of scheduled generation work."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from benana.core.timezone import utc_now
from benana.models.generation_request import GenerationRequest


class QueueStatus(str, Enum):
    """Queue job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({QueueStatus.COMPLETED, QueueStatus.FAILED, QueueStatus.CANCELLED})
OPEN_STATUSES = frozenset({QueueStatus.PENDING, QueueStatus.RUNNING})


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid queue job state transition."""

    pass


class QueueJob(SQLModel, table=True):
    """QueueJob represents one queued generation with lifecycle status tracking.

    The stored request always has ``batchCount == 1``; a batch enqueue creates one
    row per unit of work.
    """

    __tablename__ = "queue_jobs"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    status: QueueStatus = Field(default=QueueStatus.PENDING, index=True)
    request: dict = Field(sa_column=Column(JSON, nullable=False))
    result_id: Optional[str] = Field(default=None)
    error: Optional[str] = Field(default=None)
    priority: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def generation_request(self) -> GenerationRequest:
        """Parse the stored request payload.

        Raises:
            pydantic.ValidationError: If the stored payload no longer validates
        """
        return GenerationRequest.model_validate(self.request)

    def mark_completed(self, result_id: str) -> None:
        """Transition from running to completed.

        Raises:
            InvalidStateTransition: If current status is not running
            ValueError: If result_id is empty
        """
        if self.status != QueueStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Job must be in running state."
            )
        if not result_id:
            raise ValueError("result_id is required")
        self.result_id = result_id
        self.status = QueueStatus.COMPLETED
        self.completed_at = utc_now()

    def mark_failed(self, message: str) -> None:
        """Transition from running to failed.

        Raises:
            InvalidStateTransition: If current status is not running
        """
        if self.status != QueueStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot mark failed from {self.status.value}. Job must be in running state."
            )
        self.error = message
        self.status = QueueStatus.FAILED
        self.completed_at = utc_now()
