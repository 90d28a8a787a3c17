"""Typed generation request accepted at the queue boundary.

Requests are validated once, before they reach the scheduler. The queue stores the
camelCase form (``model_dump(by_alias=True)``) and re-validates it when a job starts.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_BATCH_COUNT = 4
MAX_REFERENCE_IMAGES = 14


class ModelName(str, Enum):
    GEMINI_31_FLASH_IMAGE_PREVIEW = "gemini-3.1-flash-image-preview"
    GEMINI_3_PRO_IMAGE_PREVIEW = "gemini-3-pro-image-preview"
    GEMINI_25_FLASH_IMAGE = "gemini-2.5-flash-image"
    GEMINI_25_FLASH_IMAGE_PREVIEW = "gemini-2.5-flash-image-preview"


# Models that only render at the lowest resolution tier
FAST_MODELS = frozenset({ModelName.GEMINI_25_FLASH_IMAGE, ModelName.GEMINI_25_FLASH_IMAGE_PREVIEW})


class AspectRatio(str, Enum):
    SQUARE = "1:1"
    PORTRAIT_2_3 = "2:3"
    LANDSCAPE_3_2 = "3:2"
    PORTRAIT_3_4 = "3:4"
    LANDSCAPE_4_3 = "4:3"
    PORTRAIT_4_5 = "4:5"
    LANDSCAPE_5_4 = "5:4"
    PORTRAIT_1_4 = "1:4"
    PORTRAIT_1_8 = "1:8"
    LANDSCAPE_4_1 = "4:1"
    LANDSCAPE_8_1 = "8:1"
    PORTRAIT_9_16 = "9:16"
    LANDSCAPE_16_9 = "16:9"
    ULTRAWIDE_21_9 = "21:9"


class Resolution(str, Enum):
    R512 = "512px"
    R1K = "1K"
    R2K = "2K"
    R4K = "4K"


class ThinkingLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReferenceLabel(str, Enum):
    PERSON = "person"
    OBJECT = "object"
    STYLE = "style"


class ResponseModality(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"


class ReferenceImagePayload(BaseModel):
    """One inline reference image, transported as base64."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    id: Optional[str] = None
    name: str
    mime_type: str = Field(alias="mimeType")
    data_base64: str = Field(alias="dataBase64")
    label: Optional[ReferenceLabel] = None

    @field_validator("name", "mime_type", "data_base64")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class GenerationRequest(BaseModel):
    """Everything needed to render one image (or a batch of identical requests).

    Unknown keys are rejected so a typo in a client payload fails loudly instead of
    being ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    model: ModelName
    prompt: str
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    reference_images: list[ReferenceImagePayload] = Field(
        default_factory=list, alias="referenceImages"
    )
    aspect_ratio: Optional[AspectRatio] = Field(default=None, alias="aspectRatio")
    resolution: Optional[Resolution] = None
    thinking_level: Optional[ThinkingLevel] = Field(default=None, alias="thinkingLevel")
    use_google_search: bool = Field(default=False, alias="useGoogleSearch")
    response_modalities: Optional[list[ResponseModality]] = Field(
        default=None, alias="responseModalities"
    )
    batch_count: int = Field(default=1, ge=1, le=MAX_BATCH_COUNT, alias="batchCount")
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    project_id: Optional[str] = Field(default=None, alias="projectId")

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt must not be empty")
        return v

    @field_validator("reference_images")
    @classmethod
    def validate_reference_count(
        cls, v: list[ReferenceImagePayload]
    ) -> list[ReferenceImagePayload]:
        if len(v) > MAX_REFERENCE_IMAGES:
            raise ValueError(f"At most {MAX_REFERENCE_IMAGES} reference images are allowed")
        return v

    @field_validator("response_modalities")
    @classmethod
    def validate_response_modalities(
        cls, v: Optional[list[ResponseModality]]
    ) -> Optional[list[ResponseModality]]:
        """Reject an empty list and drop duplicates, keeping first occurrence order."""
        if v is None:
            return None
        if not v:
            raise ValueError("responseModalities must contain at least one entry")
        return list(dict.fromkeys(v))

    def to_storage(self) -> dict:
        """Serialize to the camelCase JSON document kept on the queue row."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def single_unit(self) -> "GenerationRequest":
        """Copy of this request describing exactly one unit of work."""
        return self.model_copy(update={"batch_count": 1})
