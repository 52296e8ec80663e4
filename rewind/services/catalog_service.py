import math
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.exceptions import NotFoundError
from rewind.models import Difficulty, Pattern, Question


class CatalogService:
    """Read-only access to the seeded patterns and questions."""

    async def list_patterns(self, db: AsyncSession) -> list[Pattern]:
        result = await db.execute(select(Pattern).order_by(Pattern.name))
        return list(result.scalars().all())

    async def get_question(self, db: AsyncSession, question_id: UUID) -> Question:
        question = await db.get(Question, question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")
        return question

    async def list_questions(
        self,
        db: AsyncSession,
        difficulty: Optional[Difficulty] = None,
        pattern_id: Optional[UUID] = None,
        page: Optional[int] = None,
        size: Optional[int] = None,
    ) -> dict:
        """
        Questions in curriculum order.

        Without page/size every match is returned; with them the result
        carries paging totals.
        """
        filters = []
        if difficulty is not None:
            filters.append(Question.difficulty == difficulty)
        if pattern_id is not None:
            filters.append(Question.pattern_id == pattern_id)

        query = select(Question).where(*filters).order_by(Question.order_index)

        if page is None and size is None:
            result = await db.execute(query)
            return {"content": list(result.scalars().all()), "paged": False}

        page = max(0, page or 0)
        size = max(1, size or 20)
        count_result = await db.execute(select(func.count(Question.id)).where(*filters))
        total = count_result.scalar_one()

        result = await db.execute(query.offset(page * size).limit(size))
        return {
            "content": list(result.scalars().all()),
            "paged": True,
            "page": page,
            "size": size,
            "total_elements": total,
            "total_pages": math.ceil(total / size) if total else 0,
        }


# Global instance
catalog_service = CatalogService()
