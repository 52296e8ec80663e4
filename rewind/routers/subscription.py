"""
Subscription router: status and cancellation.

Purchases go through the payments router.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.dependencies import get_current_user_id
from rewind.schemas import MessageResponse, SubscriptionActiveResponse, SubscriptionStatusResponse
from rewind.services.subscription_service import subscription_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/subscription", tags=["subscription"])


@router.get("", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> SubscriptionStatusResponse:
    """
    Current subscription.

    Returns plan NONE when the user never had one; otherwise the active
    subscription, or the most recent one with active=false.
    """
    status = await subscription_service.get_status(session, user_id)
    return SubscriptionStatusResponse(**status)


@router.post("/cancel", response_model=MessageResponse)
async def cancel_subscription(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    """Stop renewal. Access continues until expiresAt."""
    subscription = await subscription_service.cancel(session, user_id)
    await session.commit()
    return MessageResponse(
        success=True,
        message=f"Subscription cancelled. Access continues until {subscription.expires_at.date().isoformat()}",
    )


@router.get("/active", response_model=SubscriptionActiveResponse)
async def is_subscription_active(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> SubscriptionActiveResponse:
    status = await subscription_service.get_status(session, user_id)
    return SubscriptionActiveResponse(active=status["active"], days_remaining=status["days_remaining"])
