from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.dependencies import get_current_user_id
from rewind.schemas import SolutionCreateRequest, SolutionCreatedResponse
from rewind.services.user_question_service import user_question_service

router = APIRouter(prefix="/v1/solutions", tags=["solutions"])


@router.post("", response_model=SolutionCreatedResponse, status_code=status.HTTP_201_CREATED)
async def submit_solution(
    request: SolutionCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> SolutionCreatedResponse:
    """Save code for a started question. Next step is recording the explanation."""
    solution = await user_question_service.submit_solution(
        session,
        user_id,
        request.user_question_id,
        request.code,
        request.language,
        request.leetcode_submission_link,
    )
    await session.commit()
    return SolutionCreatedResponse(solution_id=solution.id, is_optimal=solution.is_optimal)
