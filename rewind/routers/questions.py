"""
Catalog router: patterns and questions (seeded, read-only).
"""
from typing import List, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.dependencies import get_current_user_id
from rewind.models import Difficulty
from rewind.schemas import PatternResponse, QuestionPageResponse, QuestionResponse
from rewind.services.catalog_service import catalog_service

router = APIRouter(prefix="/v1", tags=["catalog"])


@router.get("/questions", response_model=Union[QuestionPageResponse, List[QuestionResponse]])
async def list_questions(
    difficulty: Optional[Difficulty] = Query(None),
    pattern_id: Optional[UUID] = Query(None, alias="patternId"),
    page: Optional[int] = Query(None, ge=0),
    size: Optional[int] = Query(None, ge=1, le=200),
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """
    List questions in curriculum order.

    Pass page and/or size for a paged result.
    """
    result = await catalog_service.list_questions(session, difficulty, pattern_id, page, size)
    content = [QuestionResponse.model_validate(q) for q in result["content"]]
    if not result["paged"]:
        return content
    return QuestionPageResponse(
        content=content,
        page=result["page"],
        size=result["size"],
        total_elements=result["total_elements"],
        total_pages=result["total_pages"],
    )


@router.get("/questions/{question_id}", response_model=QuestionResponse)
async def get_question(
    question_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> QuestionResponse:
    question = await catalog_service.get_question(session, question_id)
    return QuestionResponse.model_validate(question)


@router.get("/patterns", response_model=List[PatternResponse])
async def list_patterns(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> List[PatternResponse]:
    patterns = await catalog_service.list_patterns(session)
    return [PatternResponse.model_validate(p) for p in patterns]
