"""Studio settings API endpoints.

- GET    /api/settings                   - Public configuration (never the key itself)
- PATCH  /api/settings                   - Partial update
- PUT    /api/settings/api-key           - Store a new Gemini API key (encrypted)
- DELETE /api/settings/api-key           - Remove the stored key
- POST   /api/settings/api-key/validate  - Probe a key against the Gemini API
- GET    /api/settings/usage             - Logged spend per window
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from benana.api.dependencies import (
    get_config_store,
    get_gemini_client,
    get_queue,
    get_uow_factory,
)
from benana.services.config_store import ConfigPatch, ConfigStore, StudioConfigPublic
from benana.services.image_generation.gemini_client import GeminiClient
from benana.uow import UowFactory
from benana.workers.generation_queue import GenerationQueue

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/settings", tags=["settings"])


# Request/Response Models


class ApiKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", description="Gemini API key")


class ValidateApiKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(
        default=None, alias="apiKey", description="Key to check (defaults to the stored key)"
    )


class ValidateApiKeyResponse(BaseModel):
    valid: bool
    message: str


class UsageResponse(BaseModel):
    day: float = Field(..., description="Spend in the last 24 hours (USD)")
    month: float = Field(..., description="Spend in the last calendar month (USD)")
    all: float = Field(..., description="Spend since the studio was created (USD)")


@router.get("", response_model=StudioConfigPublic, response_model_by_alias=True)
async def get_settings(
    config_store: ConfigStore = Depends(get_config_store),
) -> StudioConfigPublic:
    return config_store.get_public_config()


@router.patch("", response_model=StudioConfigPublic, response_model_by_alias=True)
async def update_settings(
    patch: dict,
    config_store: ConfigStore = Depends(get_config_store),
    queue: GenerationQueue = Depends(get_queue),
) -> StudioConfigPublic:
    """Apply a partial update; a concurrency change takes effect immediately.

    Raises:
        HTTPException: 422 for unknown keys or invalid values
    """
    try:
        parsed = ConfigPatch.model_validate(patch)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False),
        )

    config = config_store.update_config(parsed)
    if "queue_concurrency" in parsed.model_fields_set:
        await queue.set_concurrency(config.queue_concurrency)
    return config


@router.put("/api-key", response_model=StudioConfigPublic, response_model_by_alias=True)
async def set_api_key(
    body: ApiKeyRequest, config_store: ConfigStore = Depends(get_config_store)
) -> StudioConfigPublic:
    try:
        config_store.set_api_key(body.api_key)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return config_store.get_public_config()


@router.delete("/api-key", response_model=StudioConfigPublic, response_model_by_alias=True)
async def clear_api_key(
    config_store: ConfigStore = Depends(get_config_store),
) -> StudioConfigPublic:
    config_store.clear_api_key()
    return config_store.get_public_config()


@router.post("/api-key/validate", response_model=ValidateApiKeyResponse)
async def validate_api_key(
    body: ValidateApiKeyRequest,
    config_store: ConfigStore = Depends(get_config_store),
    gemini_client: GeminiClient = Depends(get_gemini_client),
) -> ValidateApiKeyResponse:
    api_key = body.api_key if body.api_key is not None else config_store.get_api_key()
    result = await gemini_client.validate_api_key(api_key or "")
    logger.info("settings.api_key_validated", valid=result.valid)
    return ValidateApiKeyResponse(valid=result.valid, message=result.message)


@router.get("/usage", response_model=UsageResponse)
async def get_usage(uow_factory: UowFactory = Depends(get_uow_factory)) -> UsageResponse:
    async with await uow_factory() as uow:
        day = await uow.usage.get_session_cost("day")
        month = await uow.usage.get_session_cost("month")
        total = await uow.usage.get_session_cost("all")
    return UsageResponse(day=day, month=month, all=total)
