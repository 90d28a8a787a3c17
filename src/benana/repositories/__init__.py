"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from benana.repositories.image import ImageRepository
from benana.repositories.project import ProjectRepository
from benana.repositories.prompt_template import PromptTemplateRepository
from benana.repositories.queue_job import QueueJobRepository
from benana.repositories.reference_image import ReferenceImageRepository
from benana.repositories.usage_log import UsageLogRepository

__all__ = [
    "ImageRepository",
    "ProjectRepository",
    "PromptTemplateRepository",
    "QueueJobRepository",
    "ReferenceImageRepository",
    "UsageLogRepository",
]
