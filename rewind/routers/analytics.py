"""
Analytics router (premium).
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.dependencies import get_current_user_id, require_subscription
from rewind.schemas import AnalyticsSummaryResponse, DailyCount, PatternProgressItem, StreakResponse
from rewind.services.analytics_service import analytics_service

router = APIRouter(
    prefix="/v1/analytics",
    tags=["analytics"],
    dependencies=[Depends(require_subscription)],
)


@router.get("/weekly-progress", response_model=List[DailyCount])
async def weekly_progress(
    days: int = Query(30, ge=1, le=365),
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> List[DailyCount]:
    progress = await analytics_service.weekly_progress(session, user_id, days)
    return [DailyCount(**day) for day in progress]


@router.get("/pattern-progress", response_model=List[PatternProgressItem])
async def pattern_progress(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> List[PatternProgressItem]:
    progress = await analytics_service.pattern_progress(session, user_id)
    return [PatternProgressItem(**item) for item in progress]


@router.get("/streak", response_model=StreakResponse)
async def streak(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> StreakResponse:
    return StreakResponse(**await analytics_service.streak(session, user_id))


@router.get("/summary", response_model=AnalyticsSummaryResponse)
async def summary(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> AnalyticsSummaryResponse:
    return AnalyticsSummaryResponse.model_validate(await analytics_service.summary(session, user_id))
