"""Image artifact persistence with compensating rollback.

An artifact is the original file, its WebP thumbnail, any reference files and the
database rows describing them. ``persist_generated_image`` either creates all of
them or, on failure, removes whatever it already created before re-raising.
"""

import asyncio
import base64
import binascii
import io
import os
import re
from pathlib import Path
from typing import Awaitable, Callable, Optional
from uuid import uuid4

import structlog
from PIL import Image, UnidentifiedImageError

from benana.core.config import Settings
from benana.core.paths import StudioPaths, build_relative_path, is_path_inside_root
from benana.models.generation_request import (
    GenerationRequest,
    ReferenceImagePayload,
    ReferenceLabel,
)
from benana.models.image import GeneratedImage
from benana.models.reference_image import ReferenceImage
from benana.services.exceptions import ArtifactError, PayloadDecodeError, PayloadTooLargeError
from benana.services.image_generation.gemini_client import GeminiImagePart
from benana.uow import UowFactory

logger = structlog.get_logger(__name__)

MAX_REFERENCE_IMAGE_BYTES = 20 * 1024 * 1024

_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_WHITESPACE = re.compile(r"\s+")

UndoAction = Callable[[], Awaitable[None]]


def extension_from_mime_type(mime_type: str) -> str:
    lower = mime_type.lower()
    if "jpeg" in lower or "jpg" in lower:
        return "jpg"
    if "webp" in lower:
        return "webp"
    if "gif" in lower:
        return "gif"
    return "png"


def estimate_base64_bytes(value: str) -> int:
    """Decoded size of a normalized base64 string, computed without decoding."""
    padding = 2 if value.endswith("==") else 1 if value.endswith("=") else 0
    return max(0, len(value) * 3 // 4 - padding)


def _format_megabytes(value: int) -> str:
    return f"{value / (1024 * 1024):.1f} MB"


def decode_base64_payload(value: str, label: str, max_bytes: Optional[int] = None) -> bytes:
    """Decode a base64 transport payload.

    The size is estimated from the encoded length first so oversized input is
    rejected before it is materialized.

    Args:
        value: Base64 text (whitespace is ignored)
        label: Human-readable name used in error messages
        max_bytes: Optional ceiling for the decoded size

    Raises:
        PayloadDecodeError: If the payload is empty or not valid base64
        PayloadTooLargeError: If the payload exceeds ``max_bytes``
    """
    normalized = _WHITESPACE.sub("", value)
    if not normalized:
        raise PayloadDecodeError(f"{label} is empty.")

    if len(normalized) % 4 != 0 or not _BASE64_PATTERN.match(normalized):
        raise PayloadDecodeError(f"{label} is not valid base64.")

    if max_bytes is not None and estimate_base64_bytes(normalized) > max_bytes:
        raise PayloadTooLargeError(f"{label} is larger than {_format_megabytes(max_bytes)}.")

    try:
        decoded = base64.b64decode(normalized, validate=True)
    except binascii.Error as e:
        raise PayloadDecodeError(f"{label} could not be decoded.") from e

    if not decoded:
        raise PayloadDecodeError(f"{label} could not be decoded.")

    if max_bytes is not None and len(decoded) > max_bytes:
        raise PayloadTooLargeError(f"{label} is larger than {_format_megabytes(max_bytes)}.")

    return decoded


def render_thumbnail(data: bytes, target: Path, max_edge: int, quality: int) -> tuple[int, int]:
    """Write a WebP thumbnail that fits inside ``max_edge`` (never upscaled).

    Returns:
        (width, height) of the original image

    Raises:
        ArtifactError: If the bytes are not a readable image
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            image.thumbnail((max_edge, max_edge), Image.Resampling.LANCZOS)
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA")
            image.save(target, format="WEBP", quality=quality)
    except UnidentifiedImageError as e:
        raise ArtifactError(f"Generated image could not be read: {e}") from e
    return width, height


class RollbackLog:
    """Compensating actions recorded as each artifact step succeeds.

    ``rollback`` runs them newest-first. A failing undo is logged and the remaining
    ones still run.
    """

    def __init__(self) -> None:
        self._actions: list[tuple[str, UndoAction]] = []

    def __len__(self) -> int:
        return len(self._actions)

    def register(self, description: str, action: UndoAction) -> None:
        self._actions.append((description, action))

    async def rollback(self) -> None:
        while self._actions:
            description, action = self._actions.pop()
            try:
                await action()
            except Exception as e:
                logger.error("artifact.rollback.step_failed", step=description, error=str(e))
            else:
                logger.debug("artifact.rollback.step", step=description)


async def _remove_file(path: Path) -> None:
    await asyncio.to_thread(path.unlink, missing_ok=True)


class ImageStore:
    """Writes generated images, thumbnails and references below the studio root."""

    def __init__(self, uow_factory: UowFactory, paths: StudioPaths, settings: Settings):
        self.uow_factory = uow_factory
        self.paths = paths
        self.thumbnail_max_edge = settings.thumbnail_max_edge
        self.thumbnail_quality = settings.thumbnail_quality

    async def persist_generated_image(
        self,
        request: GenerationRequest,
        generated: GeminiImagePart,
        model_text: Optional[str],
        generation_ms: int,
        cost_estimate: float,
    ) -> str:
        """Persist one generated image with its thumbnail and reference images.

        Args:
            request: Request the image was generated for
            generated: Image payload returned by the API
            model_text: Accompanying text returned by the model
            generation_ms: Wall time of the API call
            cost_estimate: Estimated cost in USD

        Returns:
            Id of the new image row

        Raises:
            ArtifactError: Payload could not be decoded or rendered
            OSError: Disk write failed
        """
        image_bytes = decode_base64_payload(generated.data_base64, "Generated image")

        image_id = str(uuid4())
        output_directory = await self._resolve_original_output_directory(request.project_id)
        original_path = output_directory / f"{image_id}.{extension_from_mime_type(generated.mime_type)}"
        relative_thumb_path = build_relative_path("images", "thumbnails", f"{image_id}.webp")
        thumb_path = self.paths.root / relative_thumb_path

        log = logger.bind(image_id=image_id)
        undo = RollbackLog()
        try:
            await asyncio.to_thread(original_path.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(thumb_path.parent.mkdir, parents=True, exist_ok=True)

            undo.register(f"remove {original_path}", lambda: _remove_file(original_path))
            await asyncio.to_thread(original_path.write_bytes, image_bytes)

            undo.register(f"remove {thumb_path}", lambda: _remove_file(thumb_path))
            width, height = await asyncio.to_thread(
                render_thumbnail,
                image_bytes,
                thumb_path,
                self.thumbnail_max_edge,
                self.thumbnail_quality,
            )

            image = GeneratedImage(
                id=image_id,
                project_id=request.project_id,
                prompt=request.prompt,
                model=request.model.value,
                aspect_ratio=request.aspect_ratio.value if request.aspect_ratio else None,
                resolution=request.resolution.value if request.resolution else None,
                thinking_level=request.thinking_level.value if request.thinking_level else None,
                used_search=request.use_google_search,
                model_text=model_text,
                file_path=str(original_path),
                thumb_path=relative_thumb_path,
                width=width,
                height=height,
                file_size=len(image_bytes),
                parent_id=request.parent_id,
                generation_ms=generation_ms,
                cost_estimate=cost_estimate,
            )
            async with await self.uow_factory() as uow:
                await uow.images.add(image)
            undo.register(f"delete image {image_id}", lambda: self._delete_image_row(image_id))

            await self._persist_reference_images(image_id, request.reference_images, undo)
        except Exception as e:
            log.warning(
                "artifact.rollback",
                error=str(e),
                error_type=type(e).__name__,
                steps=len(undo),
            )
            await undo.rollback()
            raise

        log.info(
            "artifact.persisted",
            file_path=str(original_path),
            references=len(request.reference_images),
        )
        return image_id

    async def _persist_reference_images(
        self,
        image_id: str,
        references: list[ReferenceImagePayload],
        undo: RollbackLog,
    ) -> None:
        for index, reference in enumerate(references):
            reference_id = str(uuid4())
            extension = extension_from_mime_type(reference.mime_type)
            relative_path = build_relative_path("images", "references", f"{reference_id}.{extension}")
            absolute_path = self.paths.root / relative_path
            if not is_path_inside_root(absolute_path, self.paths.root):
                raise ArtifactError("Invalid reference image path.")

            data = decode_base64_payload(
                reference.data_base64,
                f"Reference image {index + 1}",
                MAX_REFERENCE_IMAGE_BYTES,
            )

            await asyncio.to_thread(absolute_path.parent.mkdir, parents=True, exist_ok=True)
            undo.register(f"remove {absolute_path}", lambda path=absolute_path: _remove_file(path))
            await asyncio.to_thread(absolute_path.write_bytes, data)

            async with await self.uow_factory() as uow:
                await uow.reference_images.add(
                    ReferenceImage(
                        id=reference_id,
                        image_id=image_id,
                        file_path=relative_path,
                        label=reference.label.value if reference.label else None,
                        position=index,
                    )
                )
            undo.register(
                f"delete reference {reference_id}",
                lambda ref_id=reference_id: self._delete_reference_row(ref_id),
            )

    async def discard_generated_image(self, image_id: str) -> None:
        """Hard-delete a persisted image with its references, rows and files."""
        async with await self.uow_factory() as uow:
            image = await uow.images.get_by_id(image_id)
            references = await uow.reference_images.list_by_image(image_id)
            await uow.reference_images.delete_by_image(image_id)
            await uow.images.delete_hard(image_id)

        files = [self.paths.root / reference.file_path for reference in references]
        if image is not None:
            files.append(Path(image.file_path))
            if image.thumb_path:
                files.append(self.paths.root / image.thumb_path)
        for path in files:
            await _remove_file(path)

        logger.info("artifact.discarded", image_id=image_id, files=len(files))

    async def _delete_image_row(self, image_id: str) -> None:
        async with await self.uow_factory() as uow:
            await uow.reference_images.delete_by_image(image_id)
            await uow.images.delete_hard(image_id)

    async def _delete_reference_row(self, reference_id: str) -> None:
        async with await self.uow_factory() as uow:
            await uow.reference_images.delete_by_id(reference_id)

    async def _resolve_original_output_directory(self, project_id: Optional[str]) -> Path:
        """Project output directory if configured and absolute, else the originals dir."""
        normalized_project_id = (project_id or "").strip()
        if not normalized_project_id:
            return self.paths.images_originals

        async with await self.uow_factory() as uow:
            project = await uow.projects.get_by_id(normalized_project_id)

        configured = ((project.image_output_dir if project else None) or "").strip()
        if not configured or not os.path.isabs(configured):
            return self.paths.images_originals
        return Path(configured).resolve()

    async def load_project_brand_references(
        self, project_id: str, limit: int
    ) -> list[ReferenceImagePayload]:
        """Read up to ``limit`` brand assets of a project as style references.

        Assets outside the studio root or unreadable on disk are skipped.
        """
        if limit <= 0:
            return []

        async with await self.uow_factory() as uow:
            assets = await uow.projects.list_brand_assets(project_id, limit=limit)

        references: list[ReferenceImagePayload] = []
        for asset in assets:
            absolute_path = self.paths.root / asset.file_path
            if not is_path_inside_root(absolute_path, self.paths.root):
                logger.warning("brand_asset.outside_root", asset_id=asset.id, project_id=project_id)
                continue
            try:
                data = await asyncio.to_thread(absolute_path.read_bytes)
            except OSError as e:
                logger.warning(
                    "brand_asset.unreadable",
                    asset_id=asset.id,
                    project_id=project_id,
                    error=str(e),
                )
                continue
            references.append(
                ReferenceImagePayload(
                    id=asset.id,
                    name=asset.name,
                    mime_type=asset.mime_type,
                    data_base64=base64.b64encode(data).decode("ascii"),
                    label=ReferenceLabel.STYLE,
                )
            )
        return references
