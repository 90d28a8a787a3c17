"""Image library API endpoints.

- GET    /api/images                  - List images (search, project filter, paging)
- GET    /api/images/{id}             - Image detail with reference images
- POST   /api/images/{id}/favorite    - Toggle the favorite flag
- DELETE /api/images/{id}             - Soft delete
- GET    /api/images/{id}/versions    - Ancestry chain, root first
"""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from benana.api.dependencies import get_uow_factory
from benana.models.image import GeneratedImage
from benana.models.reference_image import ReferenceImage
from benana.repositories.image import DEFAULT_LIST_LIMIT
from benana.uow import UowFactory

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/images", tags=["images"])


# Request/Response Models


class ImageDTO(BaseModel):
    """Data Transfer Object for generated images in API responses."""

    id: str
    project_id: Optional[str] = None
    prompt: str
    model: str
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    thinking_level: Optional[str] = None
    used_search: bool = False
    model_text: Optional[str] = None
    file_path: str = Field(..., description="Absolute path of the original file")
    thumb_path: Optional[str] = Field(default=None, description="Thumbnail path relative to the studio root")
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    parent_id: Optional[str] = None
    generation_ms: Optional[int] = None
    cost_estimate: Optional[float] = None
    is_favorite: bool = False
    created_at: datetime

    @classmethod
    def from_image(cls, image: GeneratedImage) -> "ImageDTO":
        return cls.model_validate(image.model_dump())


class ReferenceImageDTO(BaseModel):
    id: str
    file_path: str = Field(..., description="Path relative to the studio root")
    label: Optional[str] = None
    position: int

    @classmethod
    def from_reference(cls, reference: ReferenceImage) -> "ReferenceImageDTO":
        return cls(
            id=reference.id,
            file_path=reference.file_path,
            label=reference.label,
            position=reference.position,
        )


class ImageDetailDTO(ImageDTO):
    references: list[ReferenceImageDTO] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    deleted: bool


def _not_found(image_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Image {image_id} not found")


@router.get("", response_model=list[ImageDTO])
async def list_images(
    search: Optional[str] = Query(default=None),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    limit: int = Query(default=DEFAULT_LIST_LIMIT),
    offset: int = Query(default=0),
    uow_factory: UowFactory = Depends(get_uow_factory),
) -> list[ImageDTO]:
    """List visible images, newest first.

    ``limit`` is clamped to 1..5000 and negative offsets are treated as 0.
    """
    async with await uow_factory() as uow:
        images = await uow.images.list_images(
            search=search, project_id=project_id, limit=limit, offset=offset
        )
    return [ImageDTO.from_image(image) for image in images]


@router.get("/{image_id}", response_model=ImageDetailDTO)
async def get_image(
    image_id: str, uow_factory: UowFactory = Depends(get_uow_factory)
) -> ImageDetailDTO:
    async with await uow_factory() as uow:
        image = await uow.images.get_by_id(image_id)
        if image is None:
            raise _not_found(image_id)
        references = await uow.reference_images.list_by_image(image_id)

    return ImageDetailDTO(
        **ImageDTO.from_image(image).model_dump(),
        references=[ReferenceImageDTO.from_reference(ref) for ref in references],
    )


@router.post("/{image_id}/favorite", response_model=ImageDTO)
async def toggle_favorite(
    image_id: str, uow_factory: UowFactory = Depends(get_uow_factory)
) -> ImageDTO:
    async with await uow_factory() as uow:
        image = await uow.images.toggle_favorite(image_id)
    if image is None:
        raise _not_found(image_id)

    logger.info("image.favorite_toggled", image_id=image_id, is_favorite=image.is_favorite)
    return ImageDTO.from_image(image)


@router.delete("/{image_id}", response_model=DeleteResponse)
async def delete_image(
    image_id: str, uow_factory: UowFactory = Depends(get_uow_factory)
) -> DeleteResponse:
    """Soft delete an image. Files stay on disk."""
    async with await uow_factory() as uow:
        deleted = await uow.images.soft_delete(image_id)
    if not deleted:
        raise _not_found(image_id)

    logger.info("image.deleted", image_id=image_id)
    return DeleteResponse(deleted=True)


@router.get("/{image_id}/versions", response_model=list[ImageDTO])
async def list_versions(
    image_id: str, uow_factory: UowFactory = Depends(get_uow_factory)
) -> list[ImageDTO]:
    async with await uow_factory() as uow:
        versions = await uow.images.list_versions(image_id)
    if not versions:
        raise _not_found(image_id)
    return [ImageDTO.from_image(image) for image in versions]
