import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.exceptions import AuthorizationError, BadRequestError, NotFoundError
from rewind.models import (
    ExplanationRecording, Question, RevisionReason, RevisionSchedule, RevisionSession,
    UserPatternStats, UserQuestion, UserQuestionStatus,
)
from rewind.services.readiness_service import readiness_engine

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_WEIGHT = 0.4
TIME_DECAY_WEIGHT = 0.3
PATTERN_WEAKNESS_WEIGHT = 0.2

LOW_CONFIDENCE_MAX = 2
TIME_DECAY_AFTER_DAYS = 7
PATTERN_WEAKNESS_RATE = 0.5

PRIORITY_THRESHOLD = 0.3
MAX_DAILY_REVISIONS = 5

INITIAL_REVISION_DELAY_DAYS = 3
INITIAL_PRIORITY = 0.5


def score_candidate(
    confidence: Optional[int],
    days_since_done: int,
    pattern_completion_rate: Optional[float],
) -> tuple[float, RevisionReason]:
    """
    Priority and primary reason for revisiting a solved question.

    pattern_completion_rate is None when the pattern has no questions.
    """
    priority = 0.0
    reason = None

    if confidence is not None and confidence <= LOW_CONFIDENCE_MAX:
        priority += LOW_CONFIDENCE_WEIGHT * (5 - confidence) / 4
        reason = RevisionReason.LOW_CONFIDENCE

    if days_since_done > TIME_DECAY_AFTER_DAYS:
        priority += TIME_DECAY_WEIGHT * min(days_since_done / 30, 1.0)
        reason = reason or RevisionReason.TIME_DECAY

    if pattern_completion_rate is not None and pattern_completion_rate < PATTERN_WEAKNESS_RATE:
        priority += PATTERN_WEAKNESS_WEIGHT * (1 - pattern_completion_rate)
        reason = reason or RevisionReason.PATTERN_WEAKNESS

    # Older material wins ties
    priority *= 1 + days_since_done / 60
    return priority, reason or RevisionReason.TIME_DECAY


def initial_reason(confidence: Optional[int]) -> RevisionReason:
    if confidence is not None and confidence <= LOW_CONFIDENCE_MAX:
        return RevisionReason.LOW_CONFIDENCE
    return RevisionReason.TIME_DECAY


class RevisionScheduler:
    """
    Spaced-repetition queue over solved questions.

    Rules:
    - schedule_initial_revision(): first DONE -> one schedule 3 days out
    - generate_daily_queue(): up to 5 new schedules, highest priority first
    - complete_revision(): closes a schedule and grants the readiness bonus
    At most one open schedule per user question (partial unique index).
    """

    async def _insert_schedule(self, db: AsyncSession, schedule: RevisionSchedule) -> bool:
        """Insert inside a savepoint. False when an open schedule already exists."""
        try:
            async with db.begin_nested():
                db.add(schedule)
                await db.flush()
            return True
        except IntegrityError:
            logger.info(f"⚠️ [Revision] user_question={schedule.user_question_id} already scheduled")
            return False

    async def schedule_initial_revision(
        self, db: AsyncSession, user_question: UserQuestion, pattern_id: UUID
    ) -> Optional[RevisionSchedule]:
        schedule = RevisionSchedule(
            user_id=user_question.user_id,
            user_question_id=user_question.id,
            user_question=user_question,
            pattern_id=pattern_id,
            scheduled_at=datetime.utcnow() + timedelta(days=INITIAL_REVISION_DELAY_DAYS),
            reason=initial_reason(user_question.confidence_score),
            priority_score=INITIAL_PRIORITY,
        )
        if await self._insert_schedule(db, schedule):
            return schedule
        return None

    async def _open_user_question_ids(self, db: AsyncSession, user_id: UUID) -> set[UUID]:
        result = await db.execute(
            select(RevisionSchedule.user_question_id).where(
                RevisionSchedule.user_id == user_id,
                RevisionSchedule.completed_at.is_(None),
            )
        )
        return set(result.scalars().all())

    async def _pattern_rates(self, db: AsyncSession, user_id: UUID) -> dict[UUID, Optional[float]]:
        totals_result = await db.execute(
            select(Question.pattern_id, func.count(Question.id)).group_by(Question.pattern_id)
        )
        totals = dict(totals_result.all())

        completed_result = await db.execute(
            select(UserPatternStats.pattern_id, UserPatternStats.questions_completed).where(
                UserPatternStats.user_id == user_id
            )
        )
        completed = dict(completed_result.all())

        return {
            pattern_id: (completed.get(pattern_id, 0) / total if total > 0 else None)
            for pattern_id, total in totals.items()
        }

    async def generate_daily_queue(self, db: AsyncSession, user_id: UUID) -> list[RevisionSchedule]:
        """
        Score every solved question without an open schedule and persist the top ones.

        Safe to run concurrently: a losing insert is treated as already scheduled.
        """
        result = await db.execute(
            select(UserQuestion).where(
                UserQuestion.user_id == user_id,
                UserQuestion.status == UserQuestionStatus.DONE,
            )
        )
        done = result.scalars().all()
        open_ids = await self._open_user_question_ids(db, user_id)
        rates = await self._pattern_rates(db, user_id)

        now = datetime.utcnow()
        candidates = []
        for uq in done:
            if uq.id in open_ids:
                continue
            days = (now - uq.done_at).days if uq.done_at else 0
            pattern_id = uq.question.pattern_id
            priority, reason = score_candidate(uq.confidence_score, days, rates.get(pattern_id))
            if priority > PRIORITY_THRESHOLD:
                candidates.append((priority, reason, uq, pattern_id))

        candidates.sort(key=lambda c: c[0], reverse=True)

        created = []
        for priority, reason, uq, pattern_id in candidates[:MAX_DAILY_REVISIONS]:
            schedule = RevisionSchedule(
                user_id=user_id,
                user_question_id=uq.id,
                user_question=uq,
                pattern_id=pattern_id,
                scheduled_at=now,
                reason=reason,
                priority_score=priority,
            )
            if await self._insert_schedule(db, schedule):
                created.append(schedule)

        logger.info(f"✅ [Revision] generated {len(created)} schedules for user={user_id}")
        return created

    async def complete_revision(
        self,
        db: AsyncSession,
        user_id: UUID,
        schedule_id: UUID,
        listened_version: Optional[int] = None,
        rerecorded: bool = False,
        new_confidence: Optional[int] = None,
    ) -> RevisionSession:
        schedule = await db.get(RevisionSchedule, schedule_id)
        if schedule is None:
            raise NotFoundError(f"Revision schedule {schedule_id} not found")
        if schedule.user_id != user_id:
            raise AuthorizationError("Revision schedule belongs to another user")
        if schedule.completed_at is not None:
            raise BadRequestError("Revision already completed")

        schedule.completed_at = datetime.utcnow()

        user_question = schedule.user_question
        if new_confidence is not None:
            user_question.confidence_score = new_confidence

        session = RevisionSession(
            revision_schedule_id=schedule.id,
            listened_audio_version=listened_version,
            rerecorded=rerecorded,
            new_confidence_score=new_confidence,
        )
        db.add(session)
        await db.flush()

        await readiness_engine.revision_completed(db, user_id, user_question.question)
        return session

    async def get_pending_revisions(self, db: AsyncSession, user_id: UUID) -> list[RevisionSchedule]:
        result = await db.execute(
            select(RevisionSchedule)
            .where(
                RevisionSchedule.user_id == user_id,
                RevisionSchedule.completed_at.is_(None),
            )
            .order_by(RevisionSchedule.priority_score.desc())
        )
        return list(result.scalars().unique().all())

    async def get_today_revisions(self, db: AsyncSession, user_id: UUID) -> list[RevisionSchedule]:
        result = await db.execute(
            select(RevisionSchedule)
            .where(
                RevisionSchedule.user_id == user_id,
                RevisionSchedule.completed_at.is_(None),
                RevisionSchedule.scheduled_at <= datetime.utcnow(),
            )
            .order_by(RevisionSchedule.priority_score.desc())
        )
        return list(result.scalars().unique().all())

    async def describe(self, db: AsyncSession, schedules: list[RevisionSchedule]) -> list[dict]:
        """Expand schedules with question summary and the latest recording."""
        uq_ids = [s.user_question_id for s in schedules]
        latest: dict[UUID, ExplanationRecording] = {}
        if uq_ids:
            result = await db.execute(
                select(ExplanationRecording)
                .where(ExplanationRecording.user_question_id.in_(uq_ids))
                .order_by(ExplanationRecording.version.desc())
            )
            for recording in result.scalars().all():
                latest.setdefault(recording.user_question_id, recording)

        now = datetime.utcnow()
        items = []
        for schedule in schedules:
            uq = schedule.user_question
            question = uq.question
            recording = latest.get(uq.id)
            items.append({
                "schedule_id": schedule.id,
                "question": {
                    "id": question.id,
                    "title": question.title,
                    "difficulty": question.difficulty.value,
                    "pattern_name": question.pattern.name if question.pattern else None,
                    "leetcode_url": question.leetcode_url,
                },
                "reason": schedule.reason.value,
                "priority_score": schedule.priority_score,
                "scheduled_at": schedule.scheduled_at,
                "last_recording": {
                    "id": recording.id,
                    "version": recording.version,
                    "audio_url": recording.audio_url,
                    "recorded_at": recording.recorded_at,
                } if recording else None,
                "days_since_last_practice": (now - uq.done_at).days if uq.done_at else None,
            })
        return items


# Global instance
revision_scheduler = RevisionScheduler()
