import hashlib
import hmac
import json

import httpx
import pytest
from sqlalchemy import select

from rewind.config import settings
from rewind.exceptions import (
    AuthorizationError, BadRequestError, ExternalServiceError, ServiceUnavailableError, SignatureInvalidError,
)
from rewind.models import Payment, PaymentStatus, Subscription, SubscriptionPlan, SubscriptionStatus
from rewind.services.payment_service import (
    payment_service, verify_payment_signature, verify_webhook_signature,
)

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


def sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def checkout_signature(order_id: str, payment_id: str) -> str:
    return sign(KEY_SECRET, f"{order_id}|{payment_id}".encode())


def webhook(event: str, entity_key: str, entity: dict) -> tuple[bytes, str]:
    body = json.dumps({"event": event, "payload": {entity_key: {"entity": entity}}}).encode()
    return body, sign(WEBHOOK_SECRET, body)


class FakeRazorpay:
    def __init__(self, fail=False):
        self.fail = fail
        self.orders = []

    async def create_order(self, amount, currency, receipt, notes):
        if self.fail:
            raise httpx.ConnectError("razorpay down")
        order_id = f"order_test_{len(self.orders) + 1}"
        self.orders.append({"id": order_id, "amount": amount, "currency": currency,
                            "receipt": receipt, "notes": notes})
        return {"id": order_id, "amount": amount, "currency": currency}


@pytest.fixture
def razorpay(monkeypatch):
    fake = FakeRazorpay()
    monkeypatch.setattr(payment_service, "client", fake)
    return fake


async def _order(db, user, plan="MONTHLY"):
    order = await payment_service.create_order(db, user.id, user.email, plan)
    await db.commit()
    return order


async def _subscriptions(session_factory, user_id):
    async with session_factory() as session:
        result = await session.execute(
            select(Subscription).where(Subscription.user_id == user_id).order_by(Subscription.created_at)
        )
        return result.scalars().all()


async def _payment(session_factory, order_id):
    async with session_factory() as session:
        result = await session.execute(select(Payment).where(Payment.razorpay_order_id == order_id))
        return result.scalar_one()


def test_signature_helpers():
    assert verify_payment_signature("order_1", "pay_1", checkout_signature("order_1", "pay_1"), KEY_SECRET)
    assert not verify_payment_signature("order_1", "pay_2", checkout_signature("order_1", "pay_1"), KEY_SECRET)
    assert not verify_payment_signature("order_1", "pay_1", "", KEY_SECRET)

    body = b'{"event":"payment.captured"}'
    assert verify_webhook_signature(body, sign(WEBHOOK_SECRET, body), WEBHOOK_SECRET)
    assert not verify_webhook_signature(body + b" ", sign(WEBHOOK_SECRET, body), WEBHOOK_SECRET)


def test_plan_catalog():
    plans = payment_service.get_plans()
    assert [p["id"] for p in plans] == ["MONTHLY", "QUARTERLY"]
    assert plans[1]["popular"] is True
    assert plans[1]["savings"] == "Save ₹148"


async def test_create_order(db, user, razorpay):
    order = await _order(db, user, "quarterly")

    assert order["order_id"] == "order_test_1"
    assert order["amount"] == 29900
    assert order["currency"] == "INR"
    assert order["key_id"] == "rzp_test_key"
    assert order["plan"] == "QUARTERLY"
    assert razorpay.orders[0]["receipt"].startswith(f"rcpt_{str(user.id)[:8]}_")
    assert razorpay.orders[0]["notes"]["plan"] == "QUARTERLY"

    stored = (await db.execute(select(Payment).where(Payment.razorpay_order_id == "order_test_1"))).scalar_one()
    assert stored.status == PaymentStatus.PENDING
    assert stored.amount_paise == 29900


@pytest.mark.parametrize("plan", ["TRIAL", "WEEKLY"])
async def test_create_order_rejects_bad_plan(db, user, razorpay, plan):
    with pytest.raises(BadRequestError):
        await payment_service.create_order(db, user.id, user.email, plan)


async def test_create_order_when_payments_disabled(db, user, razorpay, monkeypatch):
    monkeypatch.setattr(settings, "razorpay_key_id", "")
    with pytest.raises(ServiceUnavailableError):
        await payment_service.create_order(db, user.id, user.email, "MONTHLY")


async def test_create_order_gateway_error(db, user, monkeypatch):
    monkeypatch.setattr(payment_service, "client", FakeRazorpay(fail=True))
    with pytest.raises(ExternalServiceError):
        await payment_service.create_order(db, user.id, user.email, "MONTHLY")


async def test_purchase_replaces_trial(db, user, trial, razorpay, session_factory):
    order = await _order(db, user)

    result = await payment_service.verify(
        db, user.id, order["order_id"], "pay_1", checkout_signature(order["order_id"], "pay_1")
    )
    await db.commit()

    assert result["success"] is True
    assert result["message"] == "Payment verified"
    assert result["subscription"]["plan"] == "MONTHLY"
    assert result["subscription"]["days_remaining"] in (29, 30)

    trial_row, monthly = await _subscriptions(session_factory, user.id)
    assert trial_row.status == SubscriptionStatus.EXPIRED
    assert monthly.plan == SubscriptionPlan.MONTHLY
    assert monthly.status == SubscriptionStatus.ACTIVE

    payment = await _payment(session_factory, order["order_id"])
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.razorpay_payment_id == "pay_1"
    assert payment.subscription_id == monthly.id

    # Replays: second verify and the captured webhook change nothing
    again = await payment_service.verify(
        db, user.id, order["order_id"], "pay_1", checkout_signature(order["order_id"], "pay_1")
    )
    assert again["message"] == "Already processed"

    body, signature = webhook("payment.captured", "payment", {"id": "pay_1", "order_id": order["order_id"]})
    await payment_service.handle_webhook(db, body, signature)
    await db.commit()

    assert len(await _subscriptions(session_factory, user.id)) == 2


async def test_invalid_checkout_signature_fails_payment(db, user, razorpay, session_factory):
    order = await _order(db, user)

    result = await payment_service.verify(db, user.id, order["order_id"], "pay_1", "forged")
    await db.commit()

    assert result == {"success": False, "message": "Invalid signature", "subscription": None}
    payment = await _payment(session_factory, order["order_id"])
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Invalid signature"


async def test_verify_unknown_order_and_foreign_payment(db, user, other_user, razorpay):
    missing = await payment_service.verify(db, user.id, "order_missing", "pay_1", "sig")
    assert missing["success"] is False

    order = await _order(db, user)
    with pytest.raises(AuthorizationError):
        await payment_service.verify(
            db, other_user.id, order["order_id"], "pay_1", checkout_signature(order["order_id"], "pay_1")
        )


async def test_captured_webhook_activates_plan(db, user, razorpay, session_factory):
    order = await _order(db, user, "QUARTERLY")

    body, signature = webhook("payment.captured", "payment", {"id": "pay_9", "order_id": order["order_id"]})
    event = await payment_service.handle_webhook(db, body, signature)
    await db.commit()

    assert event == "payment.captured"
    (subscription,) = await _subscriptions(session_factory, user.id)
    assert subscription.plan == SubscriptionPlan.QUARTERLY
    payment = await _payment(session_factory, order["order_id"])
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.razorpay_payment_id == "pay_9"


async def test_failed_webhook(db, user, razorpay, session_factory):
    order = await _order(db, user)

    body, signature = webhook("payment.failed", "payment", {
        "id": "pay_2", "order_id": order["order_id"], "error_description": "Card declined",
    })
    await payment_service.handle_webhook(db, body, signature)
    await db.commit()

    payment = await _payment(session_factory, order["order_id"])
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Card declined"


async def test_refund_cancels_subscription(db, user, razorpay, session_factory):
    order = await _order(db, user)
    await payment_service.verify(db, user.id, order["order_id"], "pay_1", checkout_signature(order["order_id"], "pay_1"))
    await db.commit()
    (before,) = await _subscriptions(session_factory, user.id)

    body, signature = webhook("refund.created", "refund", {"id": "rfnd_1", "payment_id": "pay_1"})
    await payment_service.handle_webhook(db, body, signature)
    await db.commit()

    payment = await _payment(session_factory, order["order_id"])
    assert payment.status == PaymentStatus.REFUNDED
    (after,) = await _subscriptions(session_factory, user.id)
    assert after.status == SubscriptionStatus.CANCELLED
    assert after.auto_renew is False
    assert after.expires_at == before.expires_at


async def test_webhook_rejects_bad_signature(db):
    body, _ = webhook("payment.captured", "payment", {"id": "pay_1", "order_id": "order_1"})
    with pytest.raises(SignatureInvalidError):
        await payment_service.handle_webhook(db, body, "not-a-signature")


async def test_unknown_webhook_event_is_ignored(db):
    body, signature = webhook("order.paid", "order", {"id": "order_1"})
    assert await payment_service.handle_webhook(db, body, signature) == "order.paid"
