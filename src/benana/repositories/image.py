"""GeneratedImage repository with full-text search."""

import structlog
from sqlalchemy import delete, func, or_, select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from benana.core.timezone import utc_now
from benana.models.image import GeneratedImage

logger = structlog.get_logger(__name__)

DEFAULT_LIST_LIMIT = 300
MAX_LIST_LIMIT = 5000


def escape_like_pattern(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally (ESCAPE '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ImageRepository:
    """Repository for GeneratedImage entities.

    Soft-deleted rows are invisible to every read method.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, image: GeneratedImage) -> GeneratedImage:
        self.session.add(image)
        await self.session.flush()
        return image

    async def get_by_id(self, image_id: str) -> GeneratedImage | None:
        """Retrieve a visible (not soft-deleted) image by id."""
        result = await self.session.execute(
            select(GeneratedImage).where(
                GeneratedImage.id == image_id,  # type: ignore[arg-type]
                GeneratedImage.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        return result.scalar_one_or_none()

    async def list_images(
        self,
        search: str | None = None,
        project_id: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> list[GeneratedImage]:
        """List visible images, newest first.

        With ``search`` the FTS5 index is queried first; if the MATCH query cannot run
        (index missing or the search text is not valid FTS syntax) a substring match
        over prompt and model text is used instead.

        Args:
            search: Optional search text
            project_id: Restrict to one project
            limit: Page size, clamped to 1..5000
            offset: Rows to skip (negative values are treated as 0)

        Returns:
            List of images ordered by created_at DESC
        """
        limit = min(MAX_LIST_LIMIT, max(1, limit))
        offset = max(0, offset)

        base = select(GeneratedImage).where(GeneratedImage.deleted_at.is_(None))  # type: ignore[union-attr]
        if project_id:
            base = base.where(GeneratedImage.project_id == project_id)  # type: ignore[arg-type]
        base = base.order_by(GeneratedImage.created_at.desc()).limit(limit).offset(offset)  # type: ignore[attr-defined]

        search = (search or "").strip()
        if not search:
            result = await self.session.execute(base)
            return list(result.scalars().all())

        try:
            result = await self.session.execute(
                base.where(
                    text(
                        "images.rowid IN (SELECT rowid FROM images_fts WHERE images_fts MATCH :search)"
                    ).bindparams(search=search)
                )
            )
            return list(result.scalars().all())
        except OperationalError as e:
            logger.debug("images.search.fts_fallback", error=str(e))

        pattern = f"%{escape_like_pattern(search)}%"
        result = await self.session.execute(
            base.where(
                or_(
                    GeneratedImage.prompt.like(pattern, escape="\\"),  # type: ignore[attr-defined]
                    func.coalesce(GeneratedImage.model_text, "").like(pattern, escape="\\"),
                )
            )
        )
        return list(result.scalars().all())

    async def toggle_favorite(self, image_id: str) -> GeneratedImage | None:
        """Flip the favorite flag.

        Returns:
            Updated image, or None if it does not exist
        """
        image = await self.get_by_id(image_id)
        if image is None:
            return None
        image.is_favorite = not image.is_favorite
        self.session.add(image)
        await self.session.flush()
        return image

    async def soft_delete(self, image_id: str) -> bool:
        image = await self.get_by_id(image_id)
        if image is None:
            return False
        image.deleted_at = utc_now()
        self.session.add(image)
        await self.session.flush()
        return True

    async def delete_hard(self, image_id: str) -> None:
        """Remove an image row. Reference rows must be deleted first.

        Only used to roll back an image whose artifact write did not finish.
        """
        await self.session.execute(
            delete(GeneratedImage).where(GeneratedImage.id == image_id)  # type: ignore[arg-type]
        )

    async def list_versions(self, image_id: str) -> list[GeneratedImage]:
        """Return the ancestry of an image, root first and the image itself last.

        Soft-deleted ancestors end the walk. Returns an empty list if the image itself
        is not visible.
        """
        chain: list[GeneratedImage] = []
        seen: set[str] = set()
        current_id: str | None = image_id
        while current_id and current_id not in seen:
            seen.add(current_id)
            image = await self.get_by_id(current_id)
            if image is None:
                break
            chain.append(image)
            current_id = image.parent_id
        chain.reverse()
        return chain
