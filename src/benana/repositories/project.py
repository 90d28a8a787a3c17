"""Project and brand asset repository."""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from benana.models.project import DEFAULT_PROJECT_ID, Project, ProjectBrandAsset

logger = structlog.get_logger(__name__)


class ProjectRepository:
    """Repository for Project and ProjectBrandAsset entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, project_id: str) -> Project | None:
        result = await self.session.execute(select(Project).where(Project.id == project_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def add(self, project: Project) -> Project:
        self.session.add(project)
        await self.session.flush()
        return project

    async def ensure_default_project(self) -> str:
        """Return the oldest project's id, creating the default project if none exists.

        Returns:
            Id of the default project
        """
        result = await self.session.execute(
            select(Project.id).order_by(Project.created_at.asc()).limit(1)  # type: ignore[attr-defined]
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        await self.add(
            Project(id=DEFAULT_PROJECT_ID, name="Personal", description="Default workspace")
        )
        logger.info("project.default_created", project_id=DEFAULT_PROJECT_ID)
        return DEFAULT_PROJECT_ID

    async def list_brand_assets(
        self, project_id: str, limit: int | None = None
    ) -> list[ProjectBrandAsset]:
        """Brand assets of a project, newest first.

        Args:
            project_id: Owning project
            limit: Optional maximum number of assets

        Returns:
            List of brand assets ordered by created_at DESC
        """
        query = (
            select(ProjectBrandAsset)
            .where(ProjectBrandAsset.project_id == project_id)  # type: ignore[arg-type]
            .order_by(ProjectBrandAsset.created_at.desc())  # type: ignore[attr-defined]
        )
        if limit is not None:
            query = query.limit(max(0, limit))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def add_brand_asset(self, asset: ProjectBrandAsset) -> ProjectBrandAsset:
        self.session.add(asset)
        await self.session.flush()
        return asset
