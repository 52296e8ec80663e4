"""
Recordings router.

Upload URL and save are free; analysis and feedback are premium
(checked by require_subscription from the request path).
"""
import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session, run_in_transaction
from rewind.dependencies import get_current_user_id, require_subscription
from rewind.models import AnalysisStatus
from rewind.s3_client import s3_client
from rewind.schemas import (
    AnalyzeResponse, FeedbackItem, FeedbackResponse, RecordingCreateRequest, RecordingCreatedResponse,
    UploadUrlRequest, UploadUrlResponse,
)
from rewind.services.critique_service import critique_service
from rewind.services.user_question_service import user_question_service

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/v1/recordings",
    tags=["recordings"],
    dependencies=[Depends(require_subscription)],
)


@router.post("/upload-url", response_model=UploadUrlResponse)
async def create_upload_url(
    request: UploadUrlRequest,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> UploadUrlResponse:
    """Presigned PUT URL for the next recording of a user question"""
    user_question = await user_question_service.get_owned(session, user_id, request.user_question_id)
    upload = s3_client.generate_recording_upload(user_id, user_question.id, request.content_type)
    return UploadUrlResponse(**upload)


@router.post("", response_model=RecordingCreatedResponse, status_code=status.HTTP_201_CREATED)
async def save_recording(
    request: RecordingCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> RecordingCreatedResponse:
    """
    Save an explanation recording.

    The first recording completes the question: pattern stats, readiness
    and the first revision are updated in the same transaction.
    """
    recording = await run_in_transaction(
        session,
        user_question_service.save_recording,
        user_id,
        request.user_question_id,
        request.audio_url,
        request.duration_seconds,
        request.confidence_score,
    )
    return RecordingCreatedResponse(recording_id=recording.id, version=recording.version)


@router.post("/{recording_id}/analyze", response_model=AnalyzeResponse, status_code=status.HTTP_202_ACCEPTED)
async def analyze_recording(
    recording_id: UUID,
    background_tasks: BackgroundTasks,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> AnalyzeResponse:
    """Start AI critique in the background. Repeated calls are no-ops."""
    claimed = await critique_service.request_analysis(session, user_id, recording_id)
    await session.commit()

    if claimed:
        background_tasks.add_task(critique_service.process_recording, recording_id)
        logger.info(f"🚀 [Critique] queued recording={recording_id}")
        return AnalyzeResponse(
            recording_id=recording_id,
            analysis_status=AnalysisStatus.PROCESSING,
            message="Analysis started",
        )

    feedback = await critique_service.get_feedback(session, user_id, recording_id)
    return AnalyzeResponse(
        recording_id=recording_id,
        analysis_status=feedback["analysis_status"],
        message="Analysis already requested",
    )


@router.get("/{recording_id}/feedback", response_model=FeedbackResponse)
async def get_feedback(
    recording_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> FeedbackResponse:
    result = await critique_service.get_feedback(session, user_id, recording_id)
    return FeedbackResponse(
        recording_id=result["recording_id"],
        analysis_status=result["analysis_status"],
        feedback=[
            FeedbackItem(id=f.id, type=f.feedback_type, message=f.message, created_at=f.created_at)
            for f in result["feedback"]
        ],
    )
