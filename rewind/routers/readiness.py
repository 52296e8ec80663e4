from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.dependencies import get_current_user_id
from rewind.schemas import ReadinessResponse
from rewind.services.readiness_service import readiness_engine

router = APIRouter(prefix="/v1/readiness", tags=["readiness"])


@router.get("", response_model=ReadinessResponse)
async def get_readiness(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> ReadinessResponse:
    """Days remaining, breakdown, weak patterns and the ten latest readiness events"""
    readiness = await readiness_engine.get_readiness(session, user_id)
    return ReadinessResponse.model_validate(readiness)
