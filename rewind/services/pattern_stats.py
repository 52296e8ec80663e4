import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.models import UserPatternStats

logger = logging.getLogger(__name__)


class PatternStatsTracker:
    """
    Per-(user, pattern) counters of attempts, completions and mean confidence.

    Runs inside the caller's transaction: flushes, never commits.
    """

    async def get(
        self, db: AsyncSession, user_id: UUID, pattern_id: UUID
    ) -> Optional[UserPatternStats]:
        result = await db.execute(
            select(UserPatternStats).where(
                UserPatternStats.user_id == user_id,
                UserPatternStats.pattern_id == pattern_id,
            )
        )
        return result.scalar_one_or_none()

    async def record_attempt(
        self, db: AsyncSession, user_id: UUID, pattern_id: UUID
    ) -> UserPatternStats:
        """Ensure a stats row exists and bump questions_attempted."""
        stats = await self.get(db, user_id, pattern_id)
        if stats is None:
            stats = UserPatternStats(
                user_id=user_id,
                pattern_id=pattern_id,
                questions_attempted=0,
                questions_completed=0,
                avg_confidence=0.0,
            )
            db.add(stats)

        stats.questions_attempted += 1
        await db.flush()
        return stats

    async def record_completion(
        self,
        db: AsyncSession,
        user_id: UUID,
        pattern_id: UUID,
        confidence: Optional[int] = None,
    ) -> Optional[UserPatternStats]:
        """
        Bump questions_completed and fold `confidence` into the running mean.

        A missing row is a no-op: stats are a cache of progress, not its record.
        """
        stats = await self.get(db, user_id, pattern_id)
        if stats is None:
            logger.warning(f"⚠️ [PatternStats] no row for user={user_id} pattern={pattern_id}, skipping")
            return None

        stats.questions_completed += 1
        stats.last_practiced_at = datetime.utcnow()
        if confidence is not None:
            completed = stats.questions_completed
            stats.avg_confidence = (stats.avg_confidence * (completed - 1) + confidence) / completed

        await db.flush()
        return stats


# Global instance
pattern_stats_tracker = PatternStatsTracker()
