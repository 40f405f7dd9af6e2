"""Pydantic schemas for checkout and refund endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.purchase import PaymentProvider, PurchaseStatus


class CheckoutRequest(BaseModel):
    """Request model for starting a purchase."""

    prompt_id: int = Field(gt=0, description="Prompt to purchase")
    provider: str = Field(
        default=PaymentProvider.CREDITS.value,
        description="Payment rail: credits, stripe or orynth",
    )


class CheckoutResponse(BaseModel):
    """Response model for a purchase.

    Credits purchases complete immediately; card and USDC purchases return
    a ``redirect_url`` and complete when the processor confirms payment.
    """

    purchase_id: int
    status: PurchaseStatus
    provider: PaymentProvider
    price: int
    redirect_url: Optional[str] = None
    message: str


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RefundEligibilityResponse(BaseModel):
    purchase_id: int
    refundable: bool
    status: PurchaseStatus
    amount: int
    expired: bool
    days_remaining: int
    deadline: datetime
    message: str


class RefundResponse(BaseModel):
    purchase_id: int
    refunded_amount: int
    clawback_shortfall: int = Field(
        default=0, description="Seller revenue that could not be recovered"
    )
    message: str
