"""GeneratedImage entity - persisted result of a successful generation."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from benana.core.timezone import utc_now


class GeneratedImage(SQLModel, table=True):
    """GeneratedImage is one rendered image plus the request context it came from.

    ``file_path`` is absolute (projects may redirect originals outside the studio
    root); ``thumb_path`` is relative to the studio root. ``parent_id`` links a remix
    to the image it was derived from.
    """

    __tablename__ = "images"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    project_id: Optional[str] = Field(default=None, index=True)
    prompt: str
    model: str
    aspect_ratio: Optional[str] = Field(default=None)
    resolution: Optional[str] = Field(default=None)
    thinking_level: Optional[str] = Field(default=None)
    used_search: bool = Field(default=False)
    model_text: Optional[str] = Field(default=None)
    file_path: str
    thumb_path: Optional[str] = Field(default=None)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    file_size: Optional[int] = Field(default=None)
    parent_id: Optional[str] = Field(default=None, index=True)
    generation_ms: Optional[int] = Field(default=None)
    cost_estimate: Optional[float] = Field(default=None)
    is_favorite: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
    deleted_at: Optional[datetime] = Field(default=None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
