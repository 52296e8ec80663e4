"""
Payments router: Razorpay checkout.

create-order -> client checkout -> verify (signature) -> subscription active.
Webhooks reconcile the same orders asynchronously (see webhooks.py).
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from rewind.database import get_session
from rewind.dependencies import get_current_user
from rewind.models import User
from rewind.schemas import (
    CreateOrderRequest, CreateOrderResponse, PlanItem, VerifyPaymentRequest, VerifyPaymentResponse,
)
from rewind.services.payment_service import payment_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/payments", tags=["payments"])


@router.get("/plans", response_model=List[PlanItem])
async def get_plans() -> List[PlanItem]:
    return [PlanItem(**plan) for plan in payment_service.get_plans()]


@router.post("/create-order", response_model=CreateOrderResponse)
async def create_order(
    request: CreateOrderRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> CreateOrderResponse:
    order = await payment_service.create_order(session, user.id, user.email, request.plan)
    await session.commit()
    return CreateOrderResponse(**order)


@router.post("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """
    Verify the checkout signature and activate the plan.

    Idempotent: a verified order returns the same subscription again.
    """
    result = await payment_service.verify(
        session,
        user.id,
        request.razorpay_order_id,
        request.razorpay_payment_id,
        request.razorpay_signature,
    )
    # Commit failures too: an invalid signature marks the payment FAILED
    await session.commit()

    if not result["success"]:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": result["message"]},
        )
    return VerifyPaymentResponse.model_validate(result)
