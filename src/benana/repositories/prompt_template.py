"""PromptTemplate repository."""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from benana.models.prompt_template import PromptTemplate


class PromptTemplateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, prompt: PromptTemplate) -> PromptTemplate:
        self.session.add(prompt)
        await self.session.flush()
        return prompt

    async def list_by_project(self, project_id: str) -> list[PromptTemplate]:
        """Templates of a project, most used first, then newest first."""
        result = await self.session.execute(
            select(PromptTemplate)
            .where(PromptTemplate.project_id == project_id)  # type: ignore[arg-type]
            .order_by(
                PromptTemplate.usage_count.desc(),  # type: ignore[attr-defined]
                PromptTemplate.created_at.desc(),  # type: ignore[attr-defined]
            )
        )
        return list(result.scalars().all())

    async def mark_used(self, prompt_id: str) -> None:
        """Increment the usage counter in a single UPDATE."""
        await self.session.execute(
            update(PromptTemplate)
            .where(PromptTemplate.id == prompt_id)  # type: ignore[arg-type]
            .values(usage_count=PromptTemplate.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
