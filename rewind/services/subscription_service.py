import asyncio
import logging
import re
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewind.config import settings
from rewind.exceptions import NotFoundError
from rewind.models import Payment, PaymentStatus, Subscription, SubscriptionPlan, SubscriptionStatus

logger = logging.getLogger(__name__)

# amount in paise, duration in days
PLANS = {
    SubscriptionPlan.TRIAL: {"amount": 0, "days": settings.trial_days},
    SubscriptionPlan.MONTHLY: {"amount": 14900, "days": 30},
    SubscriptionPlan.QUARTERLY: {"amount": 29900, "days": 90},
}

PRICE_MONTHLY = 149
PRICE_QUARTERLY = 299

# Routes that need an active subscription
PREMIUM_PATHS = [
    re.compile(r"^/api/v1/analytics(/.*)?$"),
    re.compile(r"^/api/v1/revisions(/.*)?$"),
    re.compile(r"^/api/v1/recordings/[^/]+/(analyze|feedback)$"),
]
FREE_ROUTES = {
    ("GET", "/api/v1/revisions/pending"),
    ("GET", "/api/v1/revisions/today"),
}

# ACTIVE and CANCELLED both grant access until expires_at
IN_EFFECT = (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED)


def requires_subscription(method: str, path: str) -> bool:
    path = path.rstrip("/") or "/"
    if (method.upper(), path) in FREE_ROUTES:
        return False
    return any(pattern.match(path) for pattern in PREMIUM_PATHS)


def plan_for_amount(amount_paise: int) -> SubscriptionPlan:
    for plan, details in PLANS.items():
        if plan != SubscriptionPlan.TRIAL and details["amount"] == amount_paise:
            return plan
    raise ValueError(f"No plan for amount {amount_paise}")


def is_in_effect(subscription: Optional[Subscription], now: Optional[datetime] = None) -> bool:
    if subscription is None:
        return False
    now = now or datetime.utcnow()
    return subscription.status in IN_EFFECT and now < subscription.expires_at


def days_remaining(subscription: Subscription, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    seconds = int((subscription.expires_at - now).total_seconds())
    return max(0, seconds // 86400)


class SubscriptionService:
    """
    Trial / paid access windows.

    Lifecycle: ACTIVE -> CANCELLED (access kept until expires_at) -> EXPIRED.
    Activation always expires the previous ACTIVE row first.
    """

    async def get_active(self, db: AsyncSession, user_id: UUID) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
            )
        )
        return result.scalar_one_or_none()

    async def get_current(self, db: AsyncSession, user_id: UUID) -> Optional[Subscription]:
        """The subscription granting access right now, ACTIVE preferred over CANCELLED."""
        result = await db.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status.in_(IN_EFFECT),
                Subscription.expires_at > datetime.utcnow(),
            )
            .order_by(Subscription.expires_at.desc())
        )
        subscriptions = result.scalars().all()
        for subscription in subscriptions:
            if subscription.status == SubscriptionStatus.ACTIVE:
                return subscription
        return subscriptions[0] if subscriptions else None

    async def get_latest(self, db: AsyncSession, user_id: UUID) -> Optional[Subscription]:
        result = await db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def is_active(self, db: AsyncSession, user_id: UUID) -> bool:
        return is_in_effect(await self.get_current(db, user_id))

    async def grant_trial_if_needed(self, db: AsyncSession, user_id: UUID) -> Subscription:
        """
        Give a first-time user a 14-day trial.

        Users with any subscription keep it. Users who already paid once get
        an EXPIRED trial so they have to buy a plan.
        """
        existing = await self.get_latest(db, user_id)
        if existing is not None:
            return existing

        paid = await db.execute(
            select(Payment.id).where(
                Payment.user_id == user_id,
                Payment.status == PaymentStatus.SUCCESS,
            ).limit(1)
        )
        now = datetime.utcnow()

        if paid.scalar_one_or_none() is not None:
            trial = Subscription(
                user_id=user_id,
                plan=SubscriptionPlan.TRIAL,
                status=SubscriptionStatus.EXPIRED,
                starts_at=now,
                expires_at=now,
                auto_renew=False,
            )
            logger.info(f"⚠️ [Subscription] user={user_id} paid before, trial not granted")
        else:
            trial = Subscription(
                user_id=user_id,
                plan=SubscriptionPlan.TRIAL,
                status=SubscriptionStatus.ACTIVE,
                starts_at=now,
                expires_at=now + timedelta(days=PLANS[SubscriptionPlan.TRIAL]["days"]),
                auto_renew=False,
            )
            logger.info(f"✅ [Subscription] trial granted to user={user_id}")

        db.add(trial)
        await db.flush()
        return trial

    async def activate(
        self, db: AsyncSession, user_id: UUID, plan: SubscriptionPlan, payment: Payment
    ) -> Subscription:
        """Expire the current ACTIVE row and open a new one linked to `payment`."""
        now = datetime.utcnow()

        current = await self.get_active(db, user_id)
        if current is not None:
            current.status = SubscriptionStatus.EXPIRED
            await db.flush()

        subscription = Subscription(
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            starts_at=now,
            expires_at=now + timedelta(days=PLANS[plan]["days"]),
            auto_renew=False,
        )
        db.add(subscription)
        await db.flush()

        payment.subscription_id = subscription.id
        await db.flush()

        logger.info(f"✅ [Subscription] {plan.value} activated for user={user_id} until {subscription.expires_at}")
        return subscription

    async def cancel(self, db: AsyncSession, user_id: UUID) -> Subscription:
        subscription = await self.get_active(db, user_id)
        if subscription is None:
            raise NotFoundError("No active subscription")
        return await self.cancel_subscription(db, subscription)

    async def cancel_subscription(self, db: AsyncSession, subscription: Subscription) -> Subscription:
        """Stop renewal and mark CANCELLED; expires_at is left alone."""
        subscription.auto_renew = False
        subscription.status = SubscriptionStatus.CANCELLED
        await db.flush()
        logger.info(f"✅ [Subscription] {subscription.id} cancelled, access until {subscription.expires_at}")
        return subscription

    async def get_status(self, db: AsyncSession, user_id: UUID) -> dict:
        now = datetime.utcnow()
        current = await self.get_current(db, user_id)
        subscription = current or await self.get_latest(db, user_id)

        if subscription is None:
            status = {
                "active": False,
                "plan": "NONE",
                "status": None,
                "days_remaining": 0,
                "expires_at": None,
                "starts_at": None,
                "is_trial": False,
                "auto_renew": False,
            }
        else:
            active = is_in_effect(current, now)
            status = {
                "active": active,
                "plan": subscription.plan.value,
                "status": subscription.status.value,
                "days_remaining": days_remaining(subscription, now) if active else 0,
                "expires_at": subscription.expires_at,
                "starts_at": subscription.starts_at,
                "is_trial": subscription.plan == SubscriptionPlan.TRIAL,
                "auto_renew": subscription.auto_renew,
            }

        status["can_upgrade"] = not status["active"] or status["is_trial"]
        status["price_monthly"] = PRICE_MONTHLY
        status["price_quarterly"] = PRICE_QUARTERLY
        return status

    async def expire_overdue(self, db: AsyncSession) -> int:
        """Flip every in-effect subscription past expires_at to EXPIRED. Idempotent."""
        result = await db.execute(
            update(Subscription)
            .where(
                Subscription.status.in_(IN_EFFECT),
                Subscription.expires_at < datetime.utcnow(),
            )
            .values(status=SubscriptionStatus.EXPIRED, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount:
            logger.info(f"✅ [Reaper] expired {result.rowcount} subscriptions")
        return result.rowcount


async def run_subscription_reaper(
    service: SubscriptionService,
    session_factory: async_sessionmaker,
    interval_seconds: int,
) -> None:
    """Fixed-rate expiry loop; started from the app lifespan, cancelled on shutdown."""
    logger.info(f"🚀 [Reaper] running every {interval_seconds}s")
    while True:
        try:
            async with session_factory() as db:
                await service.expire_overdue(db)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ [Reaper] tick failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)


# Global instance
subscription_service = SubscriptionService()
