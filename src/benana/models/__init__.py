"""SQLModel database entities and request types.

All table models are imported here so they are registered with SQLModel metadata
before ``init_db`` creates the schema.
"""

from benana.models.generation_request import (
    AspectRatio,
    GenerationRequest,
    ModelName,
    ReferenceImagePayload,
    ReferenceLabel,
    Resolution,
    ResponseModality,
    ThinkingLevel,
)
from benana.models.image import GeneratedImage
from benana.models.project import DEFAULT_PROJECT_ID, Project, ProjectBrandAsset
from benana.models.prompt_template import PromptTemplate
from benana.models.queue_job import InvalidStateTransition, QueueJob, QueueStatus
from benana.models.reference_image import ReferenceImage
from benana.models.usage_log import UsageLogEntry

__all__ = [
    "AspectRatio",
    "DEFAULT_PROJECT_ID",
    "GeneratedImage",
    "GenerationRequest",
    "InvalidStateTransition",
    "ModelName",
    "Project",
    "ProjectBrandAsset",
    "PromptTemplate",
    "QueueJob",
    "QueueStatus",
    "ReferenceImage",
    "ReferenceImagePayload",
    "ReferenceLabel",
    "Resolution",
    "ResponseModality",
    "ThinkingLevel",
    "UsageLogEntry",
]
