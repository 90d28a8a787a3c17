"""Background processing for queued generation jobs."""

from benana.workers.generation_queue import (
    GenerationQueue,
    JobCompleted,
    JobFailed,
    JobStarted,
    QueueChanged,
    QueueEvent,
)

__all__ = [
    "GenerationQueue",
    "JobCompleted",
    "JobFailed",
    "JobStarted",
    "QueueChanged",
    "QueueEvent",
]
