"""
Revisions router: spaced-repetition queue.

Reading pending/today is free; generating and completing are premium.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session, run_in_transaction
from rewind.dependencies import get_current_user_id, require_subscription
from rewind.schemas import (
    CompleteRevisionRequest, CompleteRevisionResponse, PendingRevisionsResponse, RevisionItem,
)
from rewind.services.revision_service import revision_scheduler

router = APIRouter(
    prefix="/v1/revisions",
    tags=["revisions"],
    dependencies=[Depends(require_subscription)],
)


@router.get("/pending", response_model=PendingRevisionsResponse)
async def get_pending(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> PendingRevisionsResponse:
    schedules = await revision_scheduler.get_pending_revisions(session, user_id)
    items = await revision_scheduler.describe(session, schedules)
    return PendingRevisionsResponse(
        revisions=[RevisionItem(**item) for item in items],
        total_pending=len(items),
    )


@router.get("/today", response_model=List[RevisionItem])
async def get_today(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> List[RevisionItem]:
    """Revisions due now; builds today's queue first if nothing is due."""
    schedules = await revision_scheduler.get_today_revisions(session, user_id)
    if not schedules:
        await revision_scheduler.generate_daily_queue(session, user_id)
        await session.commit()
        schedules = await revision_scheduler.get_today_revisions(session, user_id)

    items = await revision_scheduler.describe(session, schedules)
    return [RevisionItem(**item) for item in items]


@router.post("/{schedule_id}/complete", response_model=CompleteRevisionResponse)
async def complete_revision(
    schedule_id: UUID,
    request: CompleteRevisionRequest,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> CompleteRevisionResponse:
    revision_session = await run_in_transaction(
        session,
        revision_scheduler.complete_revision,
        user_id,
        schedule_id,
        request.listened_version,
        request.rerecorded,
        request.new_confidence_score,
    )
    return CompleteRevisionResponse(session_id=revision_session.id, success=True)


@router.post("/generate", response_model=List[RevisionItem])
async def generate_revisions(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> List[RevisionItem]:
    schedules = await revision_scheduler.generate_daily_queue(session, user_id)
    await session.commit()
    items = await revision_scheduler.describe(session, schedules)
    return [RevisionItem(**item) for item in items]
