import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.models import Pattern, Question, UserQuestion, UserQuestionStatus

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_DAYS = 30
SUMMARY_PROGRESS_DAYS = 7


def current_streak(active_days: set[date], today: date) -> int:
    """Consecutive active days ending today, or yesterday if today is still empty."""
    day = today if today in active_days else today - timedelta(days=1)
    streak = 0
    while day in active_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(active_days: set[date]) -> int:
    longest = 0
    for day in active_days:
        if day - timedelta(days=1) in active_days:
            continue
        length = 1
        while day + timedelta(days=length) in active_days:
            length += 1
        longest = max(longest, length)
    return longest


class AnalyticsService:
    """Dashboard reads over completed user questions."""

    async def _completion_dates(
        self, db: AsyncSession, user_id: UUID, since: Optional[datetime] = None
    ) -> list[date]:
        query = select(UserQuestion.done_at).where(
            UserQuestion.user_id == user_id,
            UserQuestion.status == UserQuestionStatus.DONE,
            UserQuestion.done_at.is_not(None),
        )
        if since is not None:
            query = query.where(UserQuestion.done_at >= since)
        result = await db.execute(query)
        return [done_at.date() for done_at in result.scalars().all()]

    async def weekly_progress(
        self, db: AsyncSession, user_id: UUID, days: int = DEFAULT_PROGRESS_DAYS
    ) -> list[dict]:
        """Completions per day for the last `days` days, oldest first, zero-filled."""
        days = max(1, days)
        today = datetime.utcnow().date()
        start = today - timedelta(days=days - 1)
        since = datetime.combine(start, datetime.min.time())

        counts = Counter(await self._completion_dates(db, user_id, since))
        return [
            {"date": (start + timedelta(days=i)).isoformat(), "count": counts.get(start + timedelta(days=i), 0)}
            for i in range(days)
        ]

    async def pattern_progress(self, db: AsyncSession, user_id: UUID) -> list[dict]:
        """Completion per pattern, least complete first."""
        totals_result = await db.execute(
            select(Question.pattern_id, func.count(Question.id)).group_by(Question.pattern_id)
        )
        totals = dict(totals_result.all())

        completed_result = await db.execute(
            select(Question.pattern_id, func.count(UserQuestion.id))
            .select_from(UserQuestion)
            .join(Question, Question.id == UserQuestion.question_id)
            .where(
                UserQuestion.user_id == user_id,
                UserQuestion.status == UserQuestionStatus.DONE,
            )
            .group_by(Question.pattern_id)
        )
        completed = dict(completed_result.all())

        patterns = await db.execute(select(Pattern))
        progress = []
        for pattern in patterns.scalars().all():
            total = totals.get(pattern.id, 0)
            done = completed.get(pattern.id, 0)
            progress.append({
                "pattern_id": pattern.id,
                "name": pattern.name,
                "category": pattern.category,
                "completed": done,
                "total": total,
                "percent_complete": done * 100 // total if total else 0,
            })

        progress.sort(key=lambda p: (p["percent_complete"], p["name"]))
        return progress

    async def streak(self, db: AsyncSession, user_id: UUID) -> dict:
        dates = await self._completion_dates(db, user_id)
        active_days = set(dates)
        today = datetime.utcnow().date()

        return {
            "current": current_streak(active_days, today),
            "longest": longest_streak(active_days),
            "total_completed": len(dates),
            "last_active": max(active_days).isoformat() if active_days else None,
        }

    async def summary(self, db: AsyncSession, user_id: UUID) -> dict:
        return {
            "weekly_progress": await self.weekly_progress(db, user_id, SUMMARY_PROGRESS_DAYS),
            "pattern_progress": await self.pattern_progress(db, user_id),
            "streak": await self.streak(db, user_id),
        }


# Global instance
analytics_service = AnalyticsService()
