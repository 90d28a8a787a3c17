"""Artifact store tests.

Tests focus on all-or-nothing persistence:
- Original, thumbnail, references and rows are written together
- Any failure removes every file and row created so far
- Payload decoding limits
"""

import base64
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image
from sqlalchemy import func, select

from benana.models.generation_request import GenerationRequest
from benana.models.image import GeneratedImage
from benana.models.project import Project, ProjectBrandAsset
from benana.models.reference_image import ReferenceImage
from benana.services.artifacts.image_store import (
    MAX_REFERENCE_IMAGE_BYTES,
    ImageStore,
    RollbackLog,
    decode_base64_payload,
    estimate_base64_bytes,
    extension_from_mime_type,
)
from benana.services.exceptions import ArtifactError, PayloadDecodeError, PayloadTooLargeError
from benana.services.image_generation.gemini_client import GeminiImagePart


def _files(root: Path) -> list[Path]:
    """Artifact files below the root (database files excluded)."""
    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file() and not path.name.startswith("studio.db")
    )


async def _count(uow_factory, model) -> int:
    async with await uow_factory() as uow:
        result = await uow.session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


@pytest.fixture
def image_store(uow_factory, paths, settings) -> ImageStore:
    return ImageStore(uow_factory, paths, settings)


def _request(**overrides) -> GenerationRequest:
    payload = {"model": "gemini-3-pro-image-preview", "prompt": "a red bicycle"}
    payload.update(overrides)
    return GenerationRequest.model_validate(payload)


@pytest.mark.asyncio
async def test_persist_writes_original_thumbnail_references_and_rows(
    image_store, uow_factory, paths, png_base64
):
    reference = {"name": "style", "mimeType": "image/jpeg", "dataBase64": png_base64(8, 8), "label": "style"}
    request = _request(aspectRatio="16:9", resolution="2K", referenceImages=[reference])
    generated = GeminiImagePart(mime_type="image/png", data_base64=png_base64(1600, 800))

    image_id = await image_store.persist_generated_image(request, generated, "Done.", 1234, 0.134)

    async with await uow_factory() as uow:
        image = await uow.images.get_by_id(image_id)
        references = await uow.reference_images.list_by_image(image_id)

    assert image is not None
    assert (image.width, image.height) == (1600, 800)
    assert image.model_text == "Done."
    assert image.resolution == "2K"
    assert image.generation_ms == 1234
    assert image.cost_estimate == pytest.approx(0.134)

    original = Path(image.file_path)
    assert original.is_absolute()
    assert original == paths.images_originals / f"{image_id}.png"
    assert original.read_bytes() == base64.b64decode(generated.data_base64)

    assert image.thumb_path == f"images/thumbnails/{image_id}.webp"
    with Image.open(paths.root / image.thumb_path) as thumbnail:
        assert thumbnail.format == "WEBP"
        assert thumbnail.size == (400, 200)

    assert len(references) == 1
    assert references[0].label == "style"
    assert references[0].file_path.startswith("images/references/")
    assert references[0].file_path.endswith(".jpg")
    assert (paths.root / references[0].file_path).exists()


@pytest.mark.asyncio
async def test_small_images_are_not_upscaled(image_store, uow_factory, paths, png_base64):
    generated = GeminiImagePart(mime_type="image/png", data_base64=png_base64(100, 50))

    image_id = await image_store.persist_generated_image(_request(), generated, None, 10, 0.134)

    with Image.open(paths.images_thumbnails / f"{image_id}.webp") as thumbnail:
        assert thumbnail.size == (100, 50)


@pytest.mark.asyncio
async def test_oversized_second_reference_rolls_back_everything(
    image_store, uow_factory, paths, png_base64
):
    """First reference is fully written before the second one fails."""
    oversized = "A" * (((MAX_REFERENCE_IMAGE_BYTES // 3) + 1) * 4)
    request = _request(
        referenceImages=[
            {"name": "ok", "mimeType": "image/png", "dataBase64": png_base64(4, 4)},
            {"name": "huge", "mimeType": "image/png", "dataBase64": oversized},
        ]
    )
    generated = GeminiImagePart(mime_type="image/png", data_base64=png_base64())
    before = _files(paths.root)

    with pytest.raises(PayloadTooLargeError, match="Reference image 2 is larger than 20.0 MB"):
        await image_store.persist_generated_image(request, generated, None, 10, 0.134)

    assert _files(paths.root) == before
    assert await _count(uow_factory, GeneratedImage) == 0
    assert await _count(uow_factory, ReferenceImage) == 0


@pytest.mark.asyncio
async def test_thumbnail_failure_removes_original(image_store, uow_factory, paths, png_base64):
    generated = GeminiImagePart(mime_type="image/png", data_base64=png_base64())
    before = _files(paths.root)

    with patch(
        "benana.services.artifacts.image_store.render_thumbnail",
        side_effect=OSError("disk full"),
    ):
        with pytest.raises(OSError, match="disk full"):
            await image_store.persist_generated_image(_request(), generated, None, 10, 0.134)

    assert _files(paths.root) == before
    assert await _count(uow_factory, GeneratedImage) == 0


@pytest.mark.asyncio
async def test_undecodable_image_bytes_fail_cleanly(image_store, uow_factory, paths):
    generated = GeminiImagePart(
        mime_type="image/png", data_base64=base64.b64encode(b"not an image").decode()
    )
    before = _files(paths.root)

    with pytest.raises(ArtifactError, match="could not be read"):
        await image_store.persist_generated_image(_request(), generated, None, 10, 0.134)

    assert _files(paths.root) == before
    assert await _count(uow_factory, GeneratedImage) == 0


@pytest.mark.asyncio
async def test_invalid_base64_writes_nothing(image_store, uow_factory, paths):
    before = _files(paths.root)

    with pytest.raises(PayloadDecodeError, match="not valid base64"):
        await image_store.persist_generated_image(
            _request(), GeminiImagePart("image/png", "@@not-base64@@"), None, 10, 0.134
        )

    assert _files(paths.root) == before


@pytest.mark.asyncio
async def test_project_output_directory_redirects_originals(
    image_store, uow_factory, paths, tmp_path_factory, png_base64
):
    output_dir = tmp_path_factory.mktemp("exports")
    async with await uow_factory() as uow:
        project = await uow.projects.add(Project(name="Client", image_output_dir=str(output_dir)))
        relative = await uow.projects.add(Project(name="Relative", image_output_dir="relative/dir"))
        project_id, relative_id = project.id, relative.id

    generated = GeminiImagePart(mime_type="image/jpeg", data_base64=png_base64())
    redirected = await image_store.persist_generated_image(
        _request(projectId=project_id), generated, None, 10, 0.134
    )
    default = await image_store.persist_generated_image(
        _request(projectId=relative_id), generated, None, 10, 0.134
    )

    assert (output_dir.resolve() / f"{redirected}.jpg").exists()
    assert (paths.images_originals / f"{default}.jpg").exists()


@pytest.mark.asyncio
async def test_brand_references_skip_missing_and_outside_files(
    image_store, uow_factory, paths, png_base64
):
    asset_path = paths.brand_assets / "logo.png"
    asset_path.write_bytes(base64.b64decode(png_base64(4, 4)))

    async with await uow_factory() as uow:
        project = await uow.projects.add(Project(name="Brand"))
        for name, file_path in [
            ("logo", "projects/brand-assets/logo.png"),
            ("missing", "projects/brand-assets/missing.png"),
            ("escape", "../outside.png"),
        ]:
            await uow.projects.add_brand_asset(
                ProjectBrandAsset(
                    project_id=project.id, name=name, mime_type="image/png", file_path=file_path
                )
            )
        project_id = project.id

    references = await image_store.load_project_brand_references(project_id, limit=14)

    assert [reference.name for reference in references] == ["logo"]
    assert references[0].label.value == "style"
    assert base64.b64decode(references[0].data_base64) == asset_path.read_bytes()
    assert await image_store.load_project_brand_references(project_id, limit=0) == []


class TestPayloadHelpers:
    def test_decode_ignores_whitespace(self):
        assert decode_base64_payload("aGVs\nbG8=", "Payload") == b"hello"

    @pytest.mark.parametrize("value", ["", "   ", "abc", "ab!d"])
    def test_decode_rejects_malformed(self, value):
        with pytest.raises(PayloadDecodeError):
            decode_base64_payload(value, "Payload")

    def test_decode_rejects_oversized_before_decoding(self):
        with pytest.raises(PayloadTooLargeError, match="larger than 0.0 MB"):
            decode_base64_payload("aGVsbG8=", "Payload", max_bytes=4)

    def test_estimate_matches_decoded_size(self):
        assert estimate_base64_bytes("aGVsbG8=") == 5
        assert estimate_base64_bytes("aGk=") == 2
        assert estimate_base64_bytes("aGVsbG8h") == 6

    @pytest.mark.parametrize(
        "mime_type,extension",
        [("image/jpeg", "jpg"), ("image/webp", "webp"), ("image/gif", "gif"), ("image/png", "png"), ("application/octet-stream", "png")],
    )
    def test_extension_from_mime_type(self, mime_type, extension):
        assert extension_from_mime_type(mime_type) == extension


@pytest.mark.asyncio
async def test_rollback_log_runs_newest_first_and_survives_failures():
    calls = []

    async def record(name):
        calls.append(name)

    async def explode():
        calls.append("explode")
        raise RuntimeError("undo failed")

    undo = RollbackLog()
    undo.register("first", lambda: record("first"))
    undo.register("explode", explode)
    undo.register("third", lambda: record("third"))

    await undo.rollback()

    assert calls == ["third", "explode", "first"]
    assert len(undo) == 0
