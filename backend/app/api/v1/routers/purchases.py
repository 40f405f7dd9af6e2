"""API routes for purchasing and refunding prompts.

This module provides REST endpoints for:
- POST /api/v1/checkout - Purchase a prompt (credits, card or USDC)
- GET /api/v1/purchases/{purchase_id}/refund - Refund eligibility
- POST /api/v1/purchases/{purchase_id}/refund - Refund a purchase
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_notifier, to_http_exception
from app.core.exceptions import MarketplaceError
from app.models.purchase import PaymentProvider, PurchaseStatus
from app.models.user import User
from app.schemas.purchase import (
    CheckoutRequest,
    CheckoutResponse,
    RefundEligibilityResponse,
    RefundRequest,
    RefundResponse,
)
from app.services.notification_service import Notifier
from app.services.refund_service import get_refund_service
from app.services.settlement_service import get_settlement_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["purchases"])


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Purchase a prompt",
    description="Settle with credits immediately, or start a card/USDC checkout",
)
async def checkout(
    request: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> CheckoutResponse:
    """Purchase a prompt.

    Credits purchases (and free prompts on any rail) complete in this call.
    Card and USDC purchases return a ``redirect_url`` to the processor and
    complete when its webhook confirms payment.

    Raises:
        HTTPException(400): Unknown provider
        HTTPException(402): Not enough credits
        HTTPException(403): Buying your own prompt
        HTTPException(404): Prompt missing or unpublished
        HTTPException(409): Already purchased
        HTTPException(502/503): Processor failed or not configured
    """
    user_id = current_user.id
    service = get_settlement_service(db, notifier=notifier)
    try:
        result = await service.settle_purchase(user_id, request.prompt_id, request.provider)
    except MarketplaceError as e:
        logger.info(
            f"Checkout rejected for user {user_id}, prompt {request.prompt_id}: "
            f"{e.code}"
        )
        raise to_http_exception(e)

    if result.status == PurchaseStatus.COMPLETED:
        message = "Purchase completed"
    else:
        message = "Complete the payment to finish your purchase"

    return CheckoutResponse(
        purchase_id=result.purchase_id,
        status=result.status,
        provider=result.provider,
        price=result.price,
        redirect_url=result.redirect_url,
        message=message,
    )


@router.get(
    "/purchases/{purchase_id}/refund",
    response_model=RefundEligibilityResponse,
    summary="Check refund eligibility",
)
async def get_refund_eligibility(
    purchase_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RefundEligibilityResponse:
    service = get_refund_service(db)
    try:
        eligibility = await service.get_refund_eligibility(purchase_id, current_user.id)
    except MarketplaceError as e:
        raise to_http_exception(e)

    return RefundEligibilityResponse(
        purchase_id=eligibility.purchase_id,
        refundable=eligibility.refundable,
        status=eligibility.status,
        amount=eligibility.amount,
        expired=eligibility.expired,
        days_remaining=eligibility.days_remaining,
        deadline=eligibility.deadline,
        message=eligibility.message,
    )


@router.post(
    "/purchases/{purchase_id}/refund",
    response_model=RefundResponse,
    summary="Refund a purchase",
    description="Refund a completed purchase inside the refund window",
)
async def refund_purchase(
    purchase_id: int,
    request: RefundRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> RefundResponse:
    """Refund a purchase.

    Credits purchases are returned as credits; card and USDC purchases are
    refunded through the processor.

    Raises:
        HTTPException(400): Not refundable (expired or not completed)
        HTTPException(403): Not the buyer
        HTTPException(404): Purchase not found
        HTTPException(502/503): Processor refund failed or rail not configured
    """
    service = get_refund_service(db, notifier=notifier)
    try:
        result = await service.refund(purchase_id, current_user.id, reason=request.reason)
    except MarketplaceError as e:
        logger.info(f"Refund rejected for purchase {purchase_id}: {e.code}")
        raise to_http_exception(e)

    return RefundResponse(
        purchase_id=result.purchase_id,
        refunded_amount=result.refunded_amount,
        clawback_shortfall=result.clawback_shortfall,
        message=f"Refunded {result.refunded_amount:,} JPY",
    )
