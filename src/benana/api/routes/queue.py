"""Generation queue API endpoints.

- GET  /api/queue                  - Recent jobs, newest first
- POST /api/queue                  - Enqueue a generation request (one job per batch unit)
- POST /api/queue/pause            - Stop dispatching new jobs
- POST /api/queue/resume           - Resume dispatching
- POST /api/queue/{job_id}/cancel  - Cancel a pending job
- PUT  /api/queue/concurrency      - Change the number of parallel jobs
"""

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from benana.api.dependencies import get_queue
from benana.models.generation_request import GenerationRequest
from benana.models.queue_job import QueueJob
from benana.services.exceptions import SpendLimitExceededError
from benana.workers.generation_queue import GenerationQueue

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/queue", tags=["queue"])


# Request/Response Models


class QueueJobDTO(BaseModel):
    """Data Transfer Object for queue jobs in API responses."""

    id: str
    status: str = Field(..., description="pending, running, completed, failed or cancelled")
    request: dict[str, Any] = Field(..., description="Stored request (batchCount is always 1)")
    result_id: str | None = Field(default=None, description="Generated image id once completed")
    error: str | None = None
    priority: int = 0
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: QueueJob) -> "QueueJobDTO":
        return cls(
            id=job.id,
            status=job.status.value,
            request=job.request,
            result_id=job.result_id,
            error=job.error,
            priority=job.priority,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )


class QueueStateResponse(BaseModel):
    jobs: list[QueueJobDTO]
    paused: bool
    concurrency: int
    active_runs: int


class EnqueueResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    queued_job_ids: list[str] = Field(..., alias="queuedJobIds")


class CancelResponse(BaseModel):
    cancelled: bool


class ConcurrencyRequest(BaseModel):
    concurrency: int = Field(..., description="Requested parallel jobs (clamped to 1..8)")


class ConcurrencyResponse(BaseModel):
    concurrency: int


@router.get("", response_model=QueueStateResponse)
async def list_jobs(
    limit: int = Query(default=200, ge=1, le=1000),
    queue: GenerationQueue = Depends(get_queue),
) -> QueueStateResponse:
    jobs = await queue.list_jobs(limit)
    return QueueStateResponse(
        jobs=[QueueJobDTO.from_job(job) for job in jobs],
        paused=queue.is_paused,
        concurrency=queue.get_concurrency(),
        active_runs=queue.active_runs,
    )


@router.post("", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
async def enqueue(
    request: GenerationRequest,
    priority: int = Query(default=0),
    queue: GenerationQueue = Depends(get_queue),
) -> EnqueueResponse:
    """Enqueue a generation request.

    Raises:
        HTTPException: 402 if a spend limit would be exceeded
    """
    try:
        job_ids = await queue.enqueue(request, priority=priority)
    except SpendLimitExceededError as e:
        logger.info(
            "queue.enqueue_rejected", limit_name=e.limit_name, shortfall=round(e.shortfall, 3)
        )
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    return EnqueueResponse(queued_job_ids=job_ids)


@router.post("/pause", response_model=QueueStateResponse)
async def pause(queue: GenerationQueue = Depends(get_queue)) -> QueueStateResponse:
    await queue.pause()
    return await list_jobs(limit=200, queue=queue)


@router.post("/resume", response_model=QueueStateResponse)
async def resume(queue: GenerationQueue = Depends(get_queue)) -> QueueStateResponse:
    await queue.resume()
    return await list_jobs(limit=200, queue=queue)


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel(job_id: str, queue: GenerationQueue = Depends(get_queue)) -> CancelResponse:
    return CancelResponse(cancelled=await queue.cancel(job_id))


@router.put("/concurrency", response_model=ConcurrencyResponse)
async def set_concurrency(
    body: ConcurrencyRequest, queue: GenerationQueue = Depends(get_queue)
) -> ConcurrencyResponse:
    return ConcurrencyResponse(concurrency=await queue.set_concurrency(body.concurrency))
