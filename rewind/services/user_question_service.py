import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.exceptions import AuthorizationError, BadRequestError, NotFoundError
from rewind.models import (
    AIFeedback, ExplanationRecording, Question, ReadinessEvent, RevisionSchedule, RevisionSession,
    Solution, User, UserPatternStats, UserQuestion, UserQuestionStatus,
)
from rewind.services.pattern_stats import pattern_stats_tracker
from rewind.services.readiness_service import readiness_engine
from rewind.services.revision_service import revision_scheduler

logger = logging.getLogger(__name__)

ACTIVITY_WINDOW_DAYS = 365


class UserQuestionService:
    """
    Lifecycle of a user working through a question.

    start -> submit_solution -> save_recording (first one completes the question).
    Methods flush but do not commit; routers own the transaction boundary.
    """

    async def get_owned(self, db: AsyncSession, user_id: UUID, user_question_id: UUID) -> UserQuestion:
        user_question = await db.get(UserQuestion, user_question_id)
        if user_question is None:
            raise NotFoundError(f"User question {user_question_id} not found")
        if user_question.user_id != user_id:
            raise AuthorizationError("User question belongs to another user")
        return user_question

    async def list_for_user(self, db: AsyncSession, user_id: UUID) -> list[UserQuestion]:
        result = await db.execute(
            select(UserQuestion)
            .join(Question, Question.id == UserQuestion.question_id)
            .where(UserQuestion.user_id == user_id)
            .order_by(Question.order_index)
        )
        return list(result.scalars().unique().all())

    async def get_status_map(self, db: AsyncSession, user_id: UUID) -> dict[str, str]:
        result = await db.execute(
            select(UserQuestion.question_id, UserQuestion.status).where(UserQuestion.user_id == user_id)
        )
        return {str(question_id): status.value for question_id, status in result.all()}

    async def get_activity(self, db: AsyncSession, user_id: UUID) -> dict[str, int]:
        """Completions per day (yyyy-mm-dd) over the past year."""
        since = datetime.utcnow() - timedelta(days=ACTIVITY_WINDOW_DAYS)
        result = await db.execute(
            select(UserQuestion.done_at).where(
                UserQuestion.user_id == user_id,
                UserQuestion.status == UserQuestionStatus.DONE,
                UserQuestion.done_at >= since,
            )
        )
        counts = Counter(done_at.date().isoformat() for done_at in result.scalars().all())
        return dict(sorted(counts.items()))

    async def _find(self, db: AsyncSession, user_id: UUID, question_id: UUID) -> Optional[UserQuestion]:
        result = await db.execute(
            select(UserQuestion).where(
                UserQuestion.user_id == user_id,
                UserQuestion.question_id == question_id,
            )
        )
        return result.scalar_one_or_none()

    async def start(self, db: AsyncSession, user_id: UUID, question_id: UUID) -> UserQuestion:
        """
        Start a question. Re-starting a STARTED or DONE question returns it unchanged.

        When two first starts race, both return the row that won the insert
        and only the winner counts an attempt.
        """
        question = await db.get(Question, question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")

        user_question = await self._find(db, user_id, question_id)
        if user_question is not None and user_question.status != UserQuestionStatus.NOT_STARTED:
            return user_question

        now = datetime.utcnow()
        if user_question is None:
            user_question = UserQuestion(
                user_id=user_id,
                question_id=question_id,
                question=question,
                status=UserQuestionStatus.STARTED,
                started_at=now,
            )
            try:
                async with db.begin_nested():
                    db.add(user_question)
                    await db.flush()
            except IntegrityError:
                logger.info(f"⚠️ [UserQuestion] user={user_id} already started question={question_id}")
                return await self._find(db, user_id, question_id)
        else:
            user_question.status = UserQuestionStatus.STARTED
            user_question.started_at = now
            await db.flush()

        await pattern_stats_tracker.record_attempt(db, user_id, question.pattern_id)
        logger.info(f"✅ [UserQuestion] user={user_id} started question={question_id}")
        return user_question

    async def get_history(self, db: AsyncSession, user_id: UUID, question_id: UUID) -> dict:
        user_question = await self._find(db, user_id, question_id)
        if user_question is None:
            raise NotFoundError(f"Question {question_id} has not been started")

        solutions = await db.execute(
            select(Solution)
            .where(Solution.user_question_id == user_question.id)
            .order_by(Solution.created_at.desc())
        )
        recordings = await db.execute(
            select(ExplanationRecording)
            .where(ExplanationRecording.user_question_id == user_question.id)
            .order_by(ExplanationRecording.version.desc())
        )
        return {
            "user_question": user_question,
            "solutions": list(solutions.scalars().all()),
            "recordings": list(recordings.scalars().all()),
        }

    async def submit_solution(
        self,
        db: AsyncSession,
        user_id: UUID,
        user_question_id: UUID,
        code: str,
        language: str,
        leetcode_link: Optional[str] = None,
    ) -> Solution:
        user_question = await self.get_owned(db, user_id, user_question_id)
        if user_question.status == UserQuestionStatus.NOT_STARTED:
            raise BadRequestError("Start the question before submitting a solution")

        solution = Solution(
            user_question_id=user_question.id,
            code=code,
            language=language,
            leetcode_link=leetcode_link,
            is_optimal=False,
        )
        db.add(solution)
        await db.flush()
        return solution

    async def save_recording(
        self,
        db: AsyncSession,
        user_id: UUID,
        user_question_id: UUID,
        audio_url: str,
        duration_seconds: Optional[int] = None,
        confidence: Optional[int] = None,
    ) -> ExplanationRecording:
        """
        Append a recording; the first one completes the question.

        Completion updates pattern stats, readiness and schedules the first
        revision. Run through run_in_transaction so all of it commits together.
        """
        user_question = await self.get_owned(db, user_id, user_question_id)

        solutions = await db.execute(
            select(func.count(Solution.id)).where(Solution.user_question_id == user_question.id)
        )
        if solutions.scalar_one() == 0:
            raise BadRequestError("Submit a solution before recording an explanation")

        completing = user_question.status != UserQuestionStatus.DONE
        if completing and confidence is None:
            raise BadRequestError("confidenceScore is required to complete a question")

        versions = await db.execute(
            select(func.max(ExplanationRecording.version)).where(
                ExplanationRecording.user_question_id == user_question.id
            )
        )
        version = (versions.scalar_one() or 0) + 1

        recording = ExplanationRecording(
            user_question_id=user_question.id,
            audio_url=audio_url,
            duration_seconds=duration_seconds,
            version=version,
        )
        db.add(recording)
        await db.flush()

        if completing:
            await self._complete(db, user_id, user_question, confidence)

        logger.info(f"✅ [UserQuestion] recording v{version} saved for user_question={user_question.id}")
        return recording

    async def _complete(
        self, db: AsyncSession, user_id: UUID, user_question: UserQuestion, confidence: int
    ) -> None:
        now = datetime.utcnow()
        user_question.status = UserQuestionStatus.DONE
        user_question.done_at = now
        user_question.confidence_score = confidence
        if user_question.started_at:
            user_question.solved_duration_seconds = int((now - user_question.started_at).total_seconds())
        await db.flush()

        question = user_question.question
        await pattern_stats_tracker.record_completion(db, user_id, question.pattern_id, confidence)
        await readiness_engine.question_completed(db, user_id, question)
        await revision_scheduler.schedule_initial_revision(db, user_question, question.pattern_id)

    async def reset_progress(self, db: AsyncSession, user_id: UUID) -> dict:
        """
        Delete all progress owned by the user and restore readiness to target.

        Subscriptions and payments are untouched.
        """
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        user_question_ids = select(UserQuestion.id).where(UserQuestion.user_id == user_id)
        schedule_ids = select(RevisionSchedule.id).where(RevisionSchedule.user_id == user_id)

        statements = [
            ("feedback", delete(AIFeedback).where(AIFeedback.user_question_id.in_(user_question_ids))),
            ("recordings", delete(ExplanationRecording).where(
                ExplanationRecording.user_question_id.in_(user_question_ids))),
            ("solutions", delete(Solution).where(Solution.user_question_id.in_(user_question_ids))),
            ("revision_sessions", delete(RevisionSession).where(
                RevisionSession.revision_schedule_id.in_(schedule_ids))),
            ("revision_schedules", delete(RevisionSchedule).where(RevisionSchedule.user_id == user_id)),
            ("user_questions", delete(UserQuestion).where(UserQuestion.user_id == user_id)),
            ("pattern_stats", delete(UserPatternStats).where(UserPatternStats.user_id == user_id)),
            ("readiness_events", delete(ReadinessEvent).where(ReadinessEvent.user_id == user_id)),
        ]

        counts = {}
        for name, statement in statements:
            result = await db.execute(statement.execution_options(synchronize_session=False))
            counts[name] = result.rowcount

        user.current_readiness_days = float(user.interview_target_days)
        await db.flush()

        logger.info(f"✅ [UserQuestion] progress reset for user={user_id}: {counts}")
        return counts


# Global instance
user_question_service = UserQuestionService()
