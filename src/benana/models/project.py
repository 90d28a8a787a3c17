"""Project and ProjectBrandAsset entities - generation context lookups."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from benana.core.timezone import utc_now

DEFAULT_PROJECT_ID = "project-default"


class Project(SQLModel, table=True):
    """Project groups images and prompts and carries brand context.

    ``image_output_dir`` redirects originals when it is an absolute path.
    """

    __tablename__ = "projects"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    description: Optional[str] = Field(default=None)
    system_prompt: Optional[str] = Field(default=None)
    brand_guidelines: Optional[str] = Field(default=None)
    brand_strict_mode: bool = Field(default=False)
    image_output_dir: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)


class ProjectBrandAsset(SQLModel, table=True):
    """Reusable brand image stored below the studio root (relative ``file_path``)."""

    __tablename__ = "project_brand_assets"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    project_id: str = Field(foreign_key="projects.id", index=True)
    name: str
    mime_type: str
    file_path: str
    created_at: datetime = Field(default_factory=utc_now)
