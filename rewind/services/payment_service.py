import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.client import ServiceClient, service_client
from rewind.config import settings
from rewind.exceptions import (
    AuthorizationError, BadRequestError, ExternalServiceError, ServiceUnavailableError,
    SignatureInvalidError,
)
from rewind.models import Payment, PaymentStatus, Subscription, SubscriptionPlan
from rewind.services.subscription_service import (
    PLANS, days_remaining, plan_for_amount, subscription_service,
)

logger = logging.getLogger(__name__)

CURRENCY = "INR"

PLAN_CATALOG = [
    {
        "id": SubscriptionPlan.MONTHLY.value,
        "name": "Monthly",
        "price": 149,
        "amount": PLANS[SubscriptionPlan.MONTHLY]["amount"],
        "duration": "30 days",
        "description": "Full access for 1 month",
        "savings": None,
        "popular": False,
    },
    {
        "id": SubscriptionPlan.QUARTERLY.value,
        "name": "Quarterly",
        "price": 299,
        "amount": PLANS[SubscriptionPlan.QUARTERLY]["amount"],
        "duration": "90 days",
        "description": "Full access for 3 months",
        "savings": "Save ₹148",
        "popular": True,
    },
]


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Razorpay checkout signature: HMAC-SHA256("order_id|payment_id") with the key secret."""
    if not secret or not signature:
        return False
    expected = _hmac_sha256(secret, f"{order_id}|{payment_id}".encode("utf-8"))
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Razorpay webhook signature: HMAC-SHA256 of the raw request body."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(_hmac_sha256(secret, body), signature)


class PaymentService:
    """
    Razorpay orders, checkout verification and webhook reconciliation.

    Payment rows are locked (SELECT ... FOR UPDATE) while they change state,
    so a verify call and webhook retries for the same order apply once.
    """

    def __init__(self, client: Optional[ServiceClient] = None):
        self.client = client or service_client

    def get_plans(self) -> list[dict]:
        return PLAN_CATALOG

    async def _lock_by_order(self, db: AsyncSession, order_id: str) -> Optional[Payment]:
        result = await db.execute(
            select(Payment).where(Payment.razorpay_order_id == order_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _lock_by_payment_id(self, db: AsyncSession, payment_id: str) -> Optional[Payment]:
        result = await db.execute(
            select(Payment).where(Payment.razorpay_payment_id == payment_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def create_order(
        self, db: AsyncSession, user_id: UUID, email: str, plan_name: str
    ) -> Dict[str, Any]:
        if not settings.payments_enabled:
            raise ServiceUnavailableError("Payments are not configured")

        try:
            plan = SubscriptionPlan(plan_name.upper())
        except ValueError:
            raise BadRequestError(f"Unknown plan: {plan_name}")
        if plan == SubscriptionPlan.TRIAL:
            raise BadRequestError("Trial cannot be purchased")

        amount = PLANS[plan]["amount"]
        receipt = f"rcpt_{str(user_id)[:8]}_{int(time.time() * 1000)}"
        notes = {"user_id": str(user_id), "plan": plan.value, "email": email}

        try:
            order = await self.client.create_order(amount, CURRENCY, receipt, notes)
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Could not create order: {e}") from e

        payment = Payment(
            user_id=user_id,
            amount_paise=amount,
            currency=CURRENCY,
            razorpay_order_id=order["id"],
            status=PaymentStatus.PENDING,
        )
        db.add(payment)
        await db.flush()

        logger.info(f"✅ [Payments] order={order['id']} plan={plan.value} user={user_id}")
        return {
            "order_id": order["id"],
            "amount": amount,
            "currency": CURRENCY,
            "key_id": settings.razorpay_key_id,
            "email": email,
            "user_id": user_id,
            "plan": plan.value,
        }

    @staticmethod
    def _subscription_summary(subscription: Optional[Subscription]) -> Optional[dict]:
        if subscription is None:
            return None
        return {
            "plan": subscription.plan.value,
            "expires_at": subscription.expires_at,
            "days_remaining": days_remaining(subscription),
        }

    async def _mark_success(
        self, db: AsyncSession, payment: Payment, payment_id: str, signature: Optional[str]
    ) -> Subscription:
        try:
            plan = plan_for_amount(payment.amount_paise)
        except ValueError as e:
            raise BadRequestError(str(e))

        payment.status = PaymentStatus.SUCCESS
        payment.razorpay_payment_id = payment_id
        if signature:
            payment.razorpay_signature = signature
        await db.flush()
        return await subscription_service.activate(db, payment.user_id, plan, payment)

    async def verify(
        self,
        db: AsyncSession,
        user_id: UUID,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> dict:
        """
        Checkout callback. Returns {success, message, subscription}.

        A bad signature marks the payment FAILED; the caller must still commit.
        """
        payment = await self._lock_by_order(db, order_id)
        if payment is None:
            return {"success": False, "message": "Payment not found", "subscription": None}
        if payment.user_id != user_id:
            raise AuthorizationError("Payment belongs to another user")

        if payment.status == PaymentStatus.SUCCESS:
            subscription = (
                await db.get(Subscription, payment.subscription_id) if payment.subscription_id else None
            )
            return {
                "success": True,
                "message": "Already processed",
                "subscription": self._subscription_summary(subscription),
            }

        if not verify_payment_signature(order_id, payment_id, signature, settings.razorpay_key_secret):
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = "Invalid signature"
            await db.flush()
            logger.warning(f"⚠️ [Payments] invalid signature for order={order_id}")
            return {"success": False, "message": "Invalid signature", "subscription": None}

        subscription = await self._mark_success(db, payment, payment_id, signature)
        logger.info(f"✅ [Payments] verified order={order_id}")
        return {
            "success": True,
            "message": "Payment verified",
            "subscription": self._subscription_summary(subscription),
        }

    async def handle_webhook(self, db: AsyncSession, body: bytes, signature: Optional[str]) -> str:
        """
        Apply a signed Razorpay event. Returns the event name.

        Raises SignatureInvalidError on a bad signature. Replays are no-ops.
        """
        secret = settings.razorpay_webhook_secret or settings.razorpay_key_secret
        if not verify_webhook_signature(body, signature, secret):
            raise SignatureInvalidError("Invalid webhook signature")

        event = json.loads(body)
        name = event.get("event", "")
        payload = event.get("payload") or {}

        if name == "payment.captured":
            await self._on_captured(db, payload["payment"]["entity"])
        elif name == "payment.failed":
            await self._on_failed(db, payload["payment"]["entity"])
        elif name == "refund.created":
            await self._on_refund(db, payload["refund"]["entity"])
        else:
            logger.info(f"⚠️ [Webhook] ignoring event {name}")

        return name

    async def _on_captured(self, db: AsyncSession, entity: dict) -> None:
        order_id = entity.get("order_id")
        payment = await self._lock_by_order(db, order_id)
        if payment is None:
            logger.warning(f"⚠️ [Webhook] captured for unknown order={order_id}")
            return
        if payment.status != PaymentStatus.PENDING:
            logger.info(f"⚠️ [Webhook] order={order_id} already {payment.status.value}")
            return

        if payment.subscription_id is None:
            await self._mark_success(db, payment, entity.get("id"), None)
        else:
            payment.status = PaymentStatus.SUCCESS
            payment.razorpay_payment_id = entity.get("id")
            await db.flush()
        logger.info(f"✅ [Webhook] order={order_id} captured")

    async def _on_failed(self, db: AsyncSession, entity: dict) -> None:
        order_id = entity.get("order_id")
        payment = await self._lock_by_order(db, order_id)
        if payment is None or payment.status != PaymentStatus.PENDING:
            return

        payment.status = PaymentStatus.FAILED
        payment.failure_reason = entity.get("error_description") or "Payment failed"
        await db.flush()
        logger.info(f"✅ [Webhook] order={order_id} failed: {payment.failure_reason}")

    async def _on_refund(self, db: AsyncSession, entity: dict) -> None:
        payment_id = entity.get("payment_id")
        payment = await self._lock_by_payment_id(db, payment_id)
        if payment is None:
            logger.warning(f"⚠️ [Webhook] refund for unknown payment={payment_id}")
            return
        if payment.status == PaymentStatus.REFUNDED:
            return

        payment.status = PaymentStatus.REFUNDED
        await db.flush()

        if payment.subscription_id:
            subscription = await db.get(Subscription, payment.subscription_id)
            if subscription is not None:
                await subscription_service.cancel_subscription(db, subscription)
        logger.info(f"✅ [Webhook] payment={payment_id} refunded")


# Global instance
payment_service = PaymentService()
