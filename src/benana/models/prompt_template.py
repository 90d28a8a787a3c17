"""PromptTemplate entity - saved prompt with variables."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from benana.core.timezone import utc_now


class PromptTemplate(SQLModel, table=True):
    __tablename__ = "prompts"  # type: ignore[assignment]

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    project_id: Optional[str] = Field(default=None, foreign_key="projects.id", index=True)
    name: str
    template: str
    variables: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    folder: Optional[str] = Field(default=None)
    usage_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)
