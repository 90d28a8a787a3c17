"""FastAPI dependencies resolving the per-process services from app state.

Everything is created once in the application lifespan (or injected by tests) and
stored on ``app.state``.
"""

from fastapi import Request

from benana.services.config_store import ConfigStore
from benana.services.image_generation.gemini_client import GeminiClient
from benana.uow import UowFactory
from benana.workers.generation_queue import GenerationQueue


def get_uow_factory(request: Request) -> UowFactory:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.images.get_by_id(image_id)
    """
    return request.app.state.uow_factory


def get_queue(request: Request) -> GenerationQueue:
    return request.app.state.queue


def get_config_store(request: Request) -> ConfigStore:
    return request.app.state.config_store


def get_gemini_client(request: Request) -> GeminiClient:
    return request.app.state.gemini_client
