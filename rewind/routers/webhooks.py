import logging

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.exceptions import SignatureInvalidError
from rewind.schemas import WebhookResponse
from rewind.services.payment_service import payment_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


@router.post("/razorpay", response_model=WebhookResponse)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(None),
    session: AsyncSession = Depends(get_session),
) -> WebhookResponse:
    """
    Razorpay event receiver (unauthenticated, HMAC-signed).

    Bad signatures get 401. Processing errors are logged and acknowledged
    with 200 so Razorpay stops retrying a payload we cannot apply.
    """
    body = await request.body()

    try:
        event = await payment_service.handle_webhook(session, body, x_razorpay_signature)
        await session.commit()
    except SignatureInvalidError:
        logger.warning("⚠️ [Webhook] rejected: invalid signature")
        raise
    except Exception as e:
        await session.rollback()
        logger.error(f"❌ [Webhook] processing failed: {e}", exc_info=True)
        return WebhookResponse(status="error logged")

    logger.info(f"✅ [Webhook] {event} processed")
    return WebhookResponse(status="ok")
