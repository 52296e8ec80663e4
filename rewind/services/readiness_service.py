import logging
import math
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.exceptions import NotFoundError
from rewind.models import (
    Difficulty, Pattern, Question, ReadinessEvent, RevisionSchedule, User, UserPatternStats, UserQuestion,
    UserQuestionStatus,
)
from rewind.services.pattern_stats import pattern_stats_tracker

logger = logging.getLogger(__name__)

# Days removed per completed question, by difficulty
DIFFICULTY_BASE = {
    Difficulty.Easy: 0.28,
    Difficulty.Medium: 0.56,
    Difficulty.Hard: 0.83,
}

# Reserved for calibration, neutral for now
DIFFICULTY_MULTIPLIER = {
    Difficulty.Easy: 1.0,
    Difficulty.Medium: 1.0,
    Difficulty.Hard: 1.0,
}

REVISION_BONUS = {
    Difficulty.Easy: 0.2,
    Difficulty.Medium: 0.3,
    Difficulty.Hard: 0.5,
}

PACE_WINDOW_DAYS = 7
RECENT_EVENTS_LIMIT = 10
WEAK_PATTERNS_LIMIT = 5


def round2(value: float) -> float:
    """Round half-up to 2 decimals (0.725 -> 0.73, unlike round())."""
    return math.floor(value * 100 + 0.5) / 100


def pattern_weight(completion_rate: Optional[float]) -> float:
    """Weak patterns earn more days per completion. None means no stats."""
    if completion_rate is None or completion_rate < 0.5:
        return 1.3
    if completion_rate < 0.8:
        return 1.1
    return 1.0


def pace_bonus(completions_last_week: int) -> float:
    avg_per_day = completions_last_week / PACE_WINDOW_DAYS
    if avg_per_day > 2:
        return 1.2
    if avg_per_day >= 1:
        return 1.1
    return 1.0


def trend_for(completions_last_week: int) -> str:
    if completions_last_week > 7:
        return "IMPROVING"
    if completions_last_week > 3:
        return "STABLE"
    return "SLOWING"


def weakness_score(
    completion_rate: float,
    avg_confidence: float,
    days_since_practice: Optional[int],
) -> float:
    recency = 1.0 if days_since_practice is None else min(1.0, days_since_practice / 30)
    return (
        (1 - completion_rate) * 0.4
        + ((5 - avg_confidence) / 5) * 0.4
        + recency * 0.2
    )


class ReadinessEngine:
    """
    Turns completion events into deltas against user.current_readiness_days.

    Writes only the user row and the readiness event log, inside the
    caller's transaction. A concurrent update of the user row surfaces as
    StaleDataError on flush; the caller replays the whole transaction.
    """

    async def question_completed(
        self, db: AsyncSession, user_id: UUID, question: Question
    ) -> ReadinessEvent:
        rate = await self._pattern_completion_rate(db, user_id, question.pattern_id)
        recent = await self.completions_since(db, user_id, datetime.utcnow() - timedelta(days=PACE_WINDOW_DAYS))

        delta_raw = (
            DIFFICULTY_BASE[question.difficulty]
            * DIFFICULTY_MULTIPLIER[question.difficulty]
            * pattern_weight(rate)
            * pace_bonus(recent)
        )
        reason = f"Completed '{question.title}' ({question.difficulty.value})"
        return await self._apply(db, user_id, delta_raw, reason, question.id)

    async def revision_completed(
        self, db: AsyncSession, user_id: UUID, question: Question
    ) -> ReadinessEvent:
        delta_raw = REVISION_BONUS[question.difficulty]
        reason = f"Revised '{question.title}'"
        return await self._apply(db, user_id, delta_raw, reason, question.id)

    async def _apply(
        self,
        db: AsyncSession,
        user_id: UUID,
        delta_raw: float,
        reason: str,
        question_id: UUID,
    ) -> ReadinessEvent:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        before = user.current_readiness_days
        user.current_readiness_days = max(0.0, round2(before - delta_raw))

        event = ReadinessEvent(
            user_id=user_id,
            change_delta_days=-round2(delta_raw),
            reason=reason,
            related_question_id=question_id,
        )
        db.add(event)
        await db.flush()

        logger.info(
            f"✅ [Readiness] user={user_id} {before} -> {user.current_readiness_days} ({reason})"
        )
        return event

    async def _pattern_completion_rate(
        self, db: AsyncSession, user_id: UUID, pattern_id: UUID
    ) -> Optional[float]:
        stats = await pattern_stats_tracker.get(db, user_id, pattern_id)
        if stats is None:
            return None
        total = await self.questions_in_pattern(db, pattern_id)
        if total == 0:
            return None
        return stats.questions_completed / total

    async def questions_in_pattern(self, db: AsyncSession, pattern_id: UUID) -> int:
        result = await db.execute(
            select(func.count(Question.id)).where(Question.pattern_id == pattern_id)
        )
        return result.scalar_one()

    async def completions_since(self, db: AsyncSession, user_id: UUID, since: datetime) -> int:
        result = await db.execute(
            select(func.count(UserQuestion.id)).where(
                UserQuestion.user_id == user_id,
                UserQuestion.status == UserQuestionStatus.DONE,
                UserQuestion.done_at >= since,
            )
        )
        return result.scalar_one()

    async def get_breakdown(self, db: AsyncSession, user_id: UUID) -> dict:
        """Totals, per-difficulty solved counts, revisions done and trend."""
        total_result = await db.execute(select(func.count(Question.id)))
        total_questions = total_result.scalar_one()

        solved_result = await db.execute(
            select(Question.difficulty, func.count(UserQuestion.id))
            .select_from(UserQuestion)
            .join(Question, Question.id == UserQuestion.question_id)
            .where(
                UserQuestion.user_id == user_id,
                UserQuestion.status == UserQuestionStatus.DONE,
            )
            .group_by(Question.difficulty)
        )
        by_difficulty = {difficulty: count for difficulty, count in solved_result.all()}
        solved = sum(by_difficulty.values())

        revisions_result = await db.execute(
            select(func.count(RevisionSchedule.id)).where(
                RevisionSchedule.user_id == user_id,
                RevisionSchedule.completed_at.is_not(None),
            )
        )

        recent = await self.completions_since(db, user_id, datetime.utcnow() - timedelta(days=PACE_WINDOW_DAYS))

        return {
            "total_questions": total_questions,
            "questions_solved": solved,
            "easy_solved": by_difficulty.get(Difficulty.Easy, 0),
            "medium_solved": by_difficulty.get(Difficulty.Medium, 0),
            "hard_solved": by_difficulty.get(Difficulty.Hard, 0),
            "revisions_completed": revisions_result.scalar_one(),
            "percent_complete": solved * 100 // total_questions if total_questions else 0,
            "trend": trend_for(recent),
        }

    async def get_weak_patterns(self, db: AsyncSession, user_id: UUID) -> list[str]:
        """Names of up to five weak patterns, weakest first."""
        now = datetime.utcnow()
        scored = []
        result = await db.execute(
            select(UserPatternStats, Pattern.name)
            .join(Pattern, Pattern.id == UserPatternStats.pattern_id)
            .where(UserPatternStats.user_id == user_id)
        )
        for stats, pattern_name in result.all():
            if stats.questions_attempted <= 0:
                continue

            rate = stats.questions_completed / stats.questions_attempted
            avg = stats.avg_confidence or 0.0
            days = (now - stats.last_practiced_at).days if stats.last_practiced_at else None

            is_weak = avg < 3.5 or rate < 0.5 or (days is not None and days > 14)
            if is_weak:
                scored.append((weakness_score(rate, avg, days), pattern_name))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [name for _, name in scored[:WEAK_PATTERNS_LIMIT]]

    async def get_recent_events(
        self, db: AsyncSession, user_id: UUID, limit: int = RECENT_EVENTS_LIMIT
    ) -> list[ReadinessEvent]:
        result = await db.execute(
            select(ReadinessEvent)
            .where(ReadinessEvent.user_id == user_id)
            .order_by(ReadinessEvent.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_readiness(self, db: AsyncSession, user_id: UUID) -> dict:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        breakdown = await self.get_breakdown(db, user_id)
        breakdown["weak_patterns"] = await self.get_weak_patterns(db, user_id)
        events = await self.get_recent_events(db, user_id)

        return {
            "days_remaining": user.current_readiness_days,
            "target_days": user.interview_target_days,
            "percent_complete": breakdown["percent_complete"],
            "trend": breakdown["trend"],
            "breakdown": breakdown,
            "recent_events": [
                {"delta": e.change_delta_days, "reason": e.reason, "created_at": e.created_at}
                for e in events
            ],
        }


# Global instance
readiness_engine = ReadinessEngine()
