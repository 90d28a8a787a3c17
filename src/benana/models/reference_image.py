"""ReferenceImage entity - ordered input image attached to a generated image."""

from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel


class ReferenceImage(SQLModel, table=True):
    """ReferenceImage stores one reference file (root-relative path) of an image."""

    __tablename__ = "reference_images"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    image_id: str = Field(foreign_key="images.id", index=True)
    file_path: str
    label: Optional[str] = Field(default=None)  # "person", "object" or "style"
    position: int = Field(default=0)
