import asyncio
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewind.client import ServiceClient, service_client
from rewind.config import settings
from rewind.database import async_session
from rewind.exceptions import AuthorizationError, NotFoundError
from rewind.models import (
    AIFeedback, AnalysisStatus, ExplanationRecording, FeedbackType, Solution, UserQuestion,
)
from rewind.services.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)

MIN_TRANSCRIPT_LENGTH = 20
DEFAULT_LANGUAGE = "python"


class CritiqueService:
    """
    AI critique of a recording: code hint, reflection question, communication tip.

    request_analysis() runs in the request transaction (PENDING -> PROCESSING).
    process_recording() runs detached with its own session and never raises.
    Each step commits its own output, so a later failure keeps earlier
    feedback; the recording then ends FAILED with an "Analysis Error:" hint.
    """

    def __init__(
        self,
        client: Optional[ServiceClient] = None,
        session_factory: Optional[async_sessionmaker] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.client = client or service_client
        self.session_factory = session_factory or async_session
        self._slots = asyncio.Semaphore(max_concurrency or settings.analysis_max_concurrency)

    async def _get_owned_recording(
        self, db: AsyncSession, user_id: UUID, recording_id: UUID
    ) -> ExplanationRecording:
        recording = await db.get(ExplanationRecording, recording_id)
        if recording is None:
            raise NotFoundError(f"Recording {recording_id} not found")
        user_question = await db.get(UserQuestion, recording.user_question_id)
        if user_question is None or user_question.user_id != user_id:
            raise AuthorizationError("Recording belongs to another user")
        return recording

    async def request_analysis(self, db: AsyncSession, user_id: UUID, recording_id: UUID) -> bool:
        """
        Claim the recording for analysis.

        Returns False (no-op) unless the recording is still PENDING.
        """
        recording = await self._get_owned_recording(db, user_id, recording_id)
        if recording.analysis_status != AnalysisStatus.PENDING:
            logger.info(f"⚠️ [Critique] recording={recording_id} is {recording.analysis_status.value}, skipping")
            return False

        recording.analysis_status = AnalysisStatus.PROCESSING
        await db.flush()
        return True

    async def get_feedback(self, db: AsyncSession, user_id: UUID, recording_id: UUID) -> dict:
        recording = await self._get_owned_recording(db, user_id, recording_id)
        result = await db.execute(
            select(AIFeedback)
            .where(AIFeedback.recording_id == recording.id)
            .order_by(AIFeedback.created_at)
        )
        return {
            "recording_id": recording.id,
            "analysis_status": recording.analysis_status,
            "feedback": list(result.scalars().all()),
        }

    async def process_recording(self, recording_id: UUID) -> None:
        """Background entry point."""
        async with self._slots:
            async with self.session_factory() as db:
                try:
                    await self._analyze(db, recording_id)
                    await db.commit()
                    logger.info(f"✅ [Critique] recording={recording_id} analyzed")
                except Exception as e:
                    logger.error(f"❌ [Critique] recording={recording_id} failed: {e}", exc_info=True)
                    await db.rollback()
                    await self._mark_failed(db, recording_id, e)

    async def _analyze(self, db: AsyncSession, recording_id: UUID) -> None:
        recording = await db.get(ExplanationRecording, recording_id)
        if recording is None:
            raise NotFoundError(f"Recording {recording_id} not found")

        user_question = await db.get(UserQuestion, recording.user_question_id)
        question = user_question.question
        pattern_name = question.pattern.name if question.pattern else "Unknown"

        solution_result = await db.execute(
            select(Solution)
            .where(Solution.user_question_id == user_question.id)
            .order_by(Solution.created_at.desc())
            .limit(1)
        )
        solution = solution_result.scalar_one_or_none()
        code = solution.code if solution else ""
        language = solution.language if solution else DEFAULT_LANGUAGE

        # 1. Code review
        hint = await self.client.generate_content(
            PromptBuilder.build_solution_prompt(
                question.title, pattern_name, question.difficulty.value, language, code
            )
        )
        self._add_feedback(db, recording, FeedbackType.HINT, hint)
        await db.commit()

        # 2. Reflection question
        reflection = await self.client.generate_content(
            PromptBuilder.build_reflection_prompt(question.title, pattern_name)
        )
        self._add_feedback(db, recording, FeedbackType.REFLECTION_QUESTION, reflection)
        await db.commit()

        # 3. Transcript
        transcript = recording.transcript or ""
        if not transcript and recording.audio_url:
            transcript = await self.client.transcribe_audio(recording.audio_url)
            if transcript:
                recording.transcript = transcript
                await db.commit()

        # 4. Communication tip
        if len(transcript) > MIN_TRANSCRIPT_LENGTH:
            tip = await self.client.generate_content(
                PromptBuilder.build_communication_prompt(question.title, transcript)
            )
            self._add_feedback(db, recording, FeedbackType.COMMUNICATION_TIP, tip)
            await db.commit()

        recording.analysis_status = AnalysisStatus.COMPLETED
        await db.flush()

    @staticmethod
    def _add_feedback(
        db: AsyncSession, recording: ExplanationRecording, feedback_type: FeedbackType, message: str
    ) -> None:
        if not message:
            return
        db.add(AIFeedback(
            user_question_id=recording.user_question_id,
            recording_id=recording.id,
            feedback_type=feedback_type,
            message=message,
        ))

    async def _mark_failed(self, db: AsyncSession, recording_id: UUID, error: Exception) -> None:
        try:
            recording = await db.get(ExplanationRecording, recording_id)
            if recording is None:
                return
            recording.analysis_status = AnalysisStatus.FAILED
            self._add_feedback(db, recording, FeedbackType.HINT, f"Analysis Error: {error}")
            await db.commit()
        except Exception as e:
            logger.error(f"❌ [Critique] could not record failure for recording={recording_id}: {e}")
            await db.rollback()


# Global instance
critique_service = CritiqueService()
