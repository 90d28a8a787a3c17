"""Generation queue: admission control and bounded-concurrency dispatch.

Jobs live in the ``queue_jobs`` table. The queue owns the in-flight counter and the
paused flag; every job completion re-runs the dispatch loop, so free slots are
refilled without polling.

Job lifecycle::

    pending -> running -> completed | failed
    pending -> cancelled
    running -> pending      (only by start() recovery after an unclean shutdown)

Database work is done in short units of work; no transaction is held open across
the remote API call.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import structlog

from benana.models.generation_request import (
    MAX_BATCH_COUNT,
    MAX_REFERENCE_IMAGES,
    GenerationRequest,
    ReferenceImagePayload,
)
from benana.models.project import Project
from benana.models.queue_job import QueueJob
from benana.models.usage_log import UsageLogEntry
from benana.services.artifacts.image_store import ImageStore
from benana.services.config_store import MAX_CONCURRENCY, MIN_CONCURRENCY, ConfigStore
from benana.services.exceptions import MissingApiKeyError
from benana.services.image_generation.gemini_client import GeminiClient
from benana.services.spend import SpendLimiter, estimate_cost
from benana.uow import UowFactory

logger = structlog.get_logger(__name__)

BRAND_GUIDELINES_LABEL = "Brand identity and brand guidelines:"
STRICT_BRAND_MODE_INSTRUCTION = (
    "Strict on-brand mode: Keep the output strictly within the brand identity. "
    "No deviations in style, colors, tone of voice or visual language without "
    "explicit user instruction."
)


@dataclass(frozen=True)
class QueueChanged:
    pass


@dataclass(frozen=True)
class JobStarted:
    job_id: str


@dataclass(frozen=True)
class JobCompleted:
    job_id: str
    image_id: str


@dataclass(frozen=True)
class JobFailed:
    job_id: str
    message: str


QueueEvent = Union[QueueChanged, JobStarted, JobCompleted, JobFailed]
QueueSubscriber = Callable[[QueueEvent], None]


def clamp_concurrency(value: float) -> int:
    """Floor and clamp to 1..8. Zero and negative values give 1."""
    return min(MAX_CONCURRENCY, max(MIN_CONCURRENCY, math.floor(value)))


def resolve_system_prompt(request: GenerationRequest, project: Optional[Project]) -> Optional[str]:
    """Combine the request's system prompt with the project's brand context.

    Order: request prompt, project prompt (if different), brand guidelines, strict
    brand instruction. Fragments are separated by a blank line.
    """
    fragments: list[str] = []
    direct = (request.system_prompt or "").strip()
    if direct:
        fragments.append(direct)

    if project is not None:
        project_prompt = (project.system_prompt or "").strip()
        if project_prompt and project_prompt != direct:
            fragments.append(project_prompt)

        guidelines = (project.brand_guidelines or "").strip()
        if guidelines:
            fragments.append(f"{BRAND_GUIDELINES_LABEL}\n{guidelines}")

        if project.brand_strict_mode:
            fragments.append(STRICT_BRAND_MODE_INSTRUCTION)

    return "\n\n".join(fragments) if fragments else None


class GenerationQueue:
    """Schedules queued generation jobs against the Gemini API.

    Construct once per process and call :meth:`start` before use.
    """

    def __init__(
        self,
        uow_factory: UowFactory,
        config_store: ConfigStore,
        gemini_client: GeminiClient,
        image_store: ImageStore,
        concurrency: int,
    ):
        self.uow_factory = uow_factory
        self.config_store = config_store
        self.gemini_client = gemini_client
        self.image_store = image_store
        self.spend_limiter = SpendLimiter(uow_factory, config_store)

        self._concurrency = clamp_concurrency(concurrency)
        self._paused = False
        self._active_runs = 0
        self._tasks: set[asyncio.Task] = set()
        self._subscribers: list[QueueSubscriber] = []
        self._dispatch_lock = asyncio.Lock()
        self._admission_lock = asyncio.Lock()

    async def start(self) -> None:
        """Requeue jobs orphaned in running state, then dispatch."""
        async with await self.uow_factory() as uow:
            recovered = await uow.queue_jobs.requeue_running()

        if recovered > 0:
            logger.info("queue.recovery", requeued_jobs=recovered)

        logger.info("queue.started", concurrency=self._concurrency)
        await self.kick()

    # Observers

    def subscribe(self, callback: QueueSubscriber) -> Callable[[], None]:
        """Register a synchronous event callback.

        Returns:
            Function that removes the callback again
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _emit(self, event: QueueEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "queue.subscriber_failed",
                    event=type(event).__name__,
                    error=str(e),
                    exc_info=e,
                )

    # Controls

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def active_runs(self) -> int:
        return self._active_runs

    def get_concurrency(self) -> int:
        return self._concurrency

    async def set_concurrency(self, value: int) -> int:
        """Clamp to 1..8 (0 gives 1) and dispatch immediately if slots opened up."""
        self._concurrency = clamp_concurrency(value)
        logger.info("queue.concurrency_changed", concurrency=self._concurrency)
        self._emit(QueueChanged())
        await self.kick()
        return self._concurrency

    async def pause(self) -> None:
        """Stop dispatching new jobs. Running jobs are not interrupted."""
        self._paused = True
        logger.info("queue.paused", active_runs=self._active_runs)
        self._emit(QueueChanged())

    async def resume(self) -> None:
        self._paused = False
        logger.info("queue.resumed")
        self._emit(QueueChanged())
        await self.kick()

    async def list_jobs(self, limit: int = 200) -> list[QueueJob]:
        async with await self.uow_factory() as uow:
            return await uow.queue_jobs.list_recent(limit)

    async def enqueue(
        self, request: GenerationRequest | dict, priority: int = 0
    ) -> list[str]:
        """Admit a request and create one pending job per batch unit.

        Args:
            request: Validated request (a dict is validated first)
            priority: Higher values are dispatched first

        Returns:
            Ids of the created jobs

        Raises:
            pydantic.ValidationError: If a dict request is invalid
            SpendLimitExceededError: If the batch would exceed a spend limit
        """
        if not isinstance(request, GenerationRequest):
            request = GenerationRequest.model_validate(request)

        batch_count = min(MAX_BATCH_COUNT, max(1, request.batch_count))
        batch_cost = estimate_cost(request.resolution) * batch_count
        stored_request = request.single_unit().to_storage()

        job_ids: list[str] = []
        # Check and insert together so concurrent enqueues see each other's reservations
        async with self._admission_lock:
            await self.spend_limiter.assert_within_limits(batch_cost)
            async with await self.uow_factory() as uow:
                for _ in range(batch_count):
                    job = QueueJob(request=dict(stored_request), priority=priority)
                    await uow.queue_jobs.add(job)
                    job_ids.append(job.id)

        logger.info(
            "queue.enqueued",
            job_ids=job_ids,
            model=request.model.value,
            priority=priority,
            estimated_cost=round(batch_cost, 3),
        )
        self._emit(QueueChanged())
        await self.kick()
        return job_ids

    async def cancel(self, job_id: str) -> bool:
        """Cancel a pending job.

        Returns:
            True if the job was cancelled, False if it was not pending
        """
        async with await self.uow_factory() as uow:
            cancelled = await uow.queue_jobs.mark_cancelled(job_id)

        if cancelled:
            logger.info("queue.job.cancelled", job_id=job_id)
            self._emit(QueueChanged())
        return cancelled

    async def drain(self) -> None:
        """Wait until no job is in flight, including jobs dispatched meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Pause dispatching and wait for running jobs to finish."""
        await self.pause()
        await self.drain()
        logger.info("queue.stopped")

    # Dispatch

    async def kick(self) -> None:
        """Fill free concurrency slots from the pending queue."""
        async with self._dispatch_lock:
            while not self._paused and self._active_runs < self._concurrency:
                async with await self.uow_factory() as uow:
                    job = await uow.queue_jobs.get_next_pending()
                    claimed = job is not None and await uow.queue_jobs.mark_running(job.id)

                if job is None:
                    break
                if not claimed:
                    # Cancelled between read and claim
                    continue

                self._active_runs += 1
                task = asyncio.create_task(self._run_job(job.id), name=f"queue-job-{job.id}")
                self._tasks.add(task)
                task.add_done_callback(self._on_job_done)

                logger.info(
                    "queue.job.started",
                    job_id=job.id,
                    priority=job.priority,
                    active_runs=self._active_runs,
                )
                self._emit(JobStarted(job_id=job.id))
                self._emit(QueueChanged())

    def _on_job_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            logger.info("queue.job.task_cancelled", task=task.get_name())
            return

        exc = task.exception()
        if exc:
            logger.error(
                "queue.job.crashed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    async def _run_job(self, job_id: str) -> None:
        """Execute one claimed (running) job and record its outcome."""
        log = logger.bind(job_id=job_id)
        started_at = time.monotonic()

        try:
            try:
                image_id = await self._execute(job_id, started_at)
            except Exception as e:
                message = str(e) or type(e).__name__
                log.error("queue.job.failed", error=message, error_type=type(e).__name__)
                async with await self.uow_factory() as uow:
                    await uow.queue_jobs.mark_failed(job_id, message)
                self._emit(JobFailed(job_id=job_id, message=message))
            else:
                self._emit(JobCompleted(job_id=job_id, image_id=image_id))
        finally:
            self._active_runs = max(0, self._active_runs - 1)
            self._emit(QueueChanged())
            await self.kick()

    async def _execute(self, job_id: str, started_at: float) -> str:
        async with await self.uow_factory() as uow:
            job = await uow.queue_jobs.get_by_id(job_id)
        if job is None:
            raise LookupError(f"Queue job {job_id} not found")

        request = job.generation_request()

        api_key = self.config_store.get_api_key()
        if not api_key:
            raise MissingApiKeyError(
                "No Gemini API key configured. Open the settings and add a key."
            )

        cost_estimate = estimate_cost(request.resolution)
        await self.spend_limiter.assert_within_limits(cost_estimate, exclude_job_id=job_id)

        project = await self._load_project(request.project_id)
        system_prompt = resolve_system_prompt(request, project)
        references = await self._resolve_reference_images(request)
        update: dict = {"reference_images": references}
        if system_prompt:
            update["system_prompt"] = system_prompt
        generation_request = request.model_copy(update=update)

        result = await self.gemini_client.generate(generation_request, api_key)
        # One image per job; batches are expanded into separate jobs at enqueue
        generated = result.images[0]
        generation_ms = int((time.monotonic() - started_at) * 1000)

        image_id = await self.image_store.persist_generated_image(
            generation_request,
            generated,
            result.model_text,
            generation_ms,
            cost_estimate,
        )

        try:
            async with await self.uow_factory() as uow:
                await uow.queue_jobs.mark_completed(job_id, image_id)
                await uow.usage.add(
                    UsageLogEntry(
                        model=request.model.value,
                        resolution=request.resolution.value if request.resolution else None,
                        cost_estimate=cost_estimate,
                        tokens_in=result.token_usage.input_tokens if result.token_usage else None,
                        tokens_out=result.token_usage.output_tokens if result.token_usage else None,
                    )
                )
        except Exception:
            # A failed job must not leave a visible image behind
            await self.image_store.discard_generated_image(image_id)
            raise

        logger.info(
            "queue.job.completed",
            job_id=job_id,
            image_id=image_id,
            attempts=result.attempts,
            generation_ms=generation_ms,
            cost_estimate=cost_estimate,
        )
        return image_id

    async def _load_project(self, project_id: Optional[str]) -> Optional[Project]:
        normalized = (project_id or "").strip()
        if not normalized:
            return None
        async with await self.uow_factory() as uow:
            return await uow.projects.get_by_id(normalized)

    async def _resolve_reference_images(
        self, request: GenerationRequest
    ) -> list[ReferenceImagePayload]:
        """Explicit references first, padded with project brand assets up to the cap."""
        explicit = list(request.reference_images[:MAX_REFERENCE_IMAGES])
        if not request.project_id:
            return explicit

        remaining_slots = MAX_REFERENCE_IMAGES - len(explicit)
        if remaining_slots <= 0:
            return explicit

        brand_references = await self.image_store.load_project_brand_references(
            request.project_id, remaining_slots
        )
        return explicit + brand_references
