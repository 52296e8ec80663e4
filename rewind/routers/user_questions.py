"""
User question router: progress on individual questions.
"""
import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.dependencies import get_current_user_id
from rewind.schemas import (
    ActivityMap, HistoryResponse, RecordingItem, SolutionItem, StatusMap, UserQuestionResponse,
)
from rewind.services.user_question_service import user_question_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/user-questions", tags=["user-questions"])


@router.get("", response_model=List[UserQuestionResponse])
async def list_user_questions(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> List[UserQuestionResponse]:
    user_questions = await user_question_service.list_for_user(session, user_id)
    return [UserQuestionResponse.model_validate(uq) for uq in user_questions]


@router.get("/status-map", response_model=StatusMap)
async def get_status_map(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """questionId -> status for every question the caller has touched"""
    return await user_question_service.get_status_map(session, user_id)


@router.get("/activity", response_model=ActivityMap)
async def get_activity(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Completions per day over the past year (heatmap)"""
    return await user_question_service.get_activity(session, user_id)


@router.delete("/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset_progress(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """
    Wipe the caller's progress and restore readiness to the target.

    Subscriptions and payments are kept.
    """
    await user_question_service.reset_progress(session, user_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{question_id}/start", response_model=UserQuestionResponse)
async def start_question(
    question_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> UserQuestionResponse:
    user_question = await user_question_service.start(session, user_id, question_id)
    await session.commit()
    return UserQuestionResponse.model_validate(user_question)


@router.get("/{question_id}/history", response_model=HistoryResponse)
async def get_history(
    question_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> HistoryResponse:
    history = await user_question_service.get_history(session, user_id, question_id)
    return HistoryResponse(
        user_question=UserQuestionResponse.model_validate(history["user_question"]),
        solutions=[SolutionItem.model_validate(s) for s in history["solutions"]],
        recordings=[RecordingItem.model_validate(r) for r in history["recordings"]],
    )
