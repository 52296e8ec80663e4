import logging
from typing import Any, Dict
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.config import settings
from rewind.exceptions import NotFoundError
from rewind.models import User
from rewind.services.subscription_service import subscription_service

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown@example.com"


def profile_from_claims(claims: Dict[str, Any]) -> Dict[str, Any]:
    metadata = claims.get("user_metadata") or {}
    return {
        "email": claims.get("email") or UNKNOWN_EMAIL,
        "name": metadata.get("name") or metadata.get("full_name"),
    }


class UserService:
    """Users are provisioned from token claims on their first request."""

    async def get(self, db: AsyncSession, user_id: UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def get_or_create(self, db: AsyncSession, user_id: UUID, claims: Dict[str, Any]) -> User:
        """
        Return the user, creating it (and its trial) on first sight.

        Commits only when something was created.
        """
        user = await db.get(User, user_id)
        if user is not None:
            return user

        profile = profile_from_claims(claims)
        user = User(
            id=user_id,
            email=profile["email"],
            name=profile["name"],
            interview_target_days=settings.default_target_days,
            current_readiness_days=float(settings.default_target_days),
        )
        db.add(user)
        try:
            await db.flush()
            await subscription_service.grant_trial_if_needed(db, user_id)
            await db.commit()
        except IntegrityError:
            # Another request provisioned the same user first
            await db.rollback()
            return await self.get(db, user_id)

        logger.info(f"✅ [User] provisioned user={user_id}")
        return user


# Global instance
user_service = UserService()
