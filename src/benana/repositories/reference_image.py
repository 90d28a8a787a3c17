"""ReferenceImage repository."""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from benana.models.reference_image import ReferenceImage


class ReferenceImageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, reference: ReferenceImage) -> ReferenceImage:
        self.session.add(reference)
        await self.session.flush()
        return reference

    async def list_by_image(self, image_id: str) -> list[ReferenceImage]:
        """Reference images of one generated image in position order."""
        result = await self.session.execute(
            select(ReferenceImage)
            .where(ReferenceImage.image_id == image_id)  # type: ignore[arg-type]
            .order_by(ReferenceImage.position.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def delete_by_id(self, reference_id: str) -> None:
        await self.session.execute(
            delete(ReferenceImage).where(ReferenceImage.id == reference_id)  # type: ignore[arg-type]
        )

    async def delete_by_image(self, image_id: str) -> None:
        await self.session.execute(
            delete(ReferenceImage).where(ReferenceImage.image_id == image_id)  # type: ignore[arg-type]
        )
