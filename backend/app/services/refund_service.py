"""Refund engine: reverses a completed purchase inside the refund window.

The window is ``REFUND_PERIOD_DAYS`` from the purchase's creation time,
inclusive: a request at exactly the boundary is allowed, one second later
is not.

Clawback policy: the seller's revenue share is taken back from their credits
and (for processor-settled purchases) their wallet, each capped at what is
available. Whatever cannot be recovered is stored on the purchase as
``clawback_shortfall`` and logged; no balance is ever driven negative.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    LedgerError,
    NotRefundableError,
    ProcessorUnavailableError,
    PurchaseNotFoundError,
)
from app.models.credit_history import CreditHistoryType
from app.models.prompt import Prompt
from app.models.purchase import PaymentProvider, Purchase, PurchaseStatus
from app.services.ledger_service import LedgerService
from app.services.notification_service import Notifier, get_notifier
from app.services.payment_gateway import PaymentGateway
from app.utils.money import seller_share
from app.utils.timeutil import ensure_utc, utcnow

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass
class RefundEligibility:
    """Read-only answer to "can this purchase be refunded now?"."""

    purchase_id: int
    refundable: bool
    status: PurchaseStatus
    amount: int
    expired: bool
    days_remaining: int
    deadline: datetime
    message: str


@dataclass
class RefundResult:
    purchase_id: int
    refunded_amount: int
    clawed_back: int
    clawback_shortfall: int
    processor_refund_id: Optional[str] = None


class RefundService:
    """Service for refunding purchases."""

    def __init__(
        self,
        db: AsyncSession,
        gateways: Optional[dict[PaymentProvider, Optional[PaymentGateway]]] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.db = db
        self.ledger = LedgerService(db)
        self.gateways = gateways if gateways is not None else {}
        self.notifier = notifier or get_notifier()

    async def get_refund_eligibility(
        self,
        purchase_id: int,
        requester_id: int,
        now: Optional[datetime] = None,
    ) -> RefundEligibility:
        """Check whether a purchase can be refunded.

        Args:
            purchase_id: The purchase
            requester_id: Caller; must be the buyer
            now: Evaluation time (defaults to the current time)

        Returns:
            RefundEligibility with days remaining or expiry

        Raises:
            PurchaseNotFoundError: Purchase does not exist
            ForbiddenError: Caller is not the buyer
        """
        purchase = await self._load_for_requester(purchase_id, requester_id)
        return self._evaluate(purchase, now or utcnow())

    async def refund(
        self,
        purchase_id: int,
        requester_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RefundResult:
        """Refund a completed purchase.

        Processor-settled purchases are refunded with the processor first,
        outside any ledger transaction; the ledger reversal then commits
        atomically.

        Args:
            purchase_id: The purchase to refund
            requester_id: Caller; must be the buyer
            reason: Optional reason shown to the seller
            now: Evaluation time (defaults to the current time)

        Returns:
            RefundResult with the refunded amount and clawback outcome

        Raises:
            PurchaseNotFoundError: Purchase does not exist
            ForbiddenError: Caller is not the buyer
            NotRefundableError: Not completed, or outside the refund window
            ProcessorUnavailableError: Rail not configured for the refund
            ProcessorError: Processor refund failed
            LedgerError: Ledger reversal failed and was rolled back
        """
        now = now or utcnow()
        purchase = await self._load_for_requester(purchase_id, requester_id)

        eligibility = self._evaluate(purchase, now)
        if not eligibility.refundable:
            raise NotRefundableError(
                eligibility.message,
                {
                    "purchase_id": purchase_id,
                    "status": eligibility.status.value,
                    "expired": eligibility.expired,
                    "days_remaining": eligibility.days_remaining,
                },
            )

        buyer_id = purchase.user_id
        seller_id = purchase.seller_id
        prompt_id = purchase.prompt_id
        provider = purchase.payment_provider
        price = purchase.price_at_purchase
        payment_id = purchase.processor_payment_id
        share = seller_share(price)
        external = provider != PaymentProvider.CREDITS

        prompt_title = await self.db.scalar(select(Prompt.title).where(Prompt.id == prompt_id))
        prompt_title = prompt_title or f"prompt {prompt_id}"
        title = prompt_title[:30]

        # Processor refund first; the ledger is only reversed once money moved
        processor_refund_id = None
        if external and price > 0:
            gateway = self.gateways.get(provider)
            if gateway is None:
                raise ProcessorUnavailableError(provider.value)
            if not payment_id:
                raise InvalidStateError(
                    "This purchase has no processor payment to refund",
                    {"purchase_id": purchase_id},
                )
            processor_refund_id = await gateway.refund_payment(payment_id, price)

        try:
            result = await self.db.execute(
                update(Purchase)
                .where(Purchase.id == purchase_id, Purchase.status == PurchaseStatus.COMPLETED)
                .values(status=PurchaseStatus.REFUNDED, refunded_at=now, refund_reason=reason)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise NotRefundableError(
                    "This purchase has already been refunded",
                    {"purchase_id": purchase_id, "status": PurchaseStatus.REFUNDED.value},
                )

            await self.ledger.lock_users(buyer_id, seller_id)
            if not external and price > 0:
                await self.ledger.credit_credits(
                    buyer_id, price, CreditHistoryType.REFUND, f"Refund: {title}", purchase_id
                )
            else:
                # Money went back through the processor
                self.ledger.record_credit_audit(
                    buyer_id, CreditHistoryType.REFUND, f"Refund ({provider.value}): {title}", purchase_id
                )

            clawed_back = await self.ledger.claw_back_credits(
                seller_id, share, f"Sale reversed by refund: {title}", purchase_id
            )
            shortfall = share - clawed_back

            if external:
                clawed_wallet = await self.ledger.claw_back_revenue(
                    seller_id, share, f"Sale reversed by refund: {title}", purchase_id
                )
                shortfall += share - clawed_wallet

            if shortfall > 0:
                await self.db.execute(
                    update(Purchase)
                    .where(Purchase.id == purchase_id)
                    .values(clawback_shortfall=shortfall)
                    .execution_options(synchronize_session=False)
                )

            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            log = logger.critical if processor_refund_id else logger.error
            log(
                f"Refund ledger reversal failed and was rolled back: "
                f"purchase={purchase_id}, buyer={buyer_id}, seller={seller_id}, "
                f"price={price}, processor_refund={processor_refund_id}: {e}"
            )
            raise LedgerError("Refund could not be completed", {"purchase_id": purchase_id})

        if shortfall > 0:
            logger.warning(
                f"Refund of purchase {purchase_id}: could not recover {shortfall} "
                f"from seller {seller_id} (clawback capped at available balance)"
            )

        logger.info(
            f"Purchase {purchase_id} refunded: buyer={buyer_id} +{price}, "
            f"seller={seller_id} -{clawed_back} credits"
        )

        try:
            await self.notifier.purchase_refunded(
                buyer_id, seller_id, prompt_id, prompt_title, price, clawed_back
            )
        except Exception as e:
            logger.warning(f"Refund notification for purchase {purchase_id} failed: {e}")

        return RefundResult(
            purchase_id=purchase_id,
            refunded_amount=price,
            clawed_back=clawed_back,
            clawback_shortfall=shortfall,
            processor_refund_id=processor_refund_id,
        )

    async def _load_for_requester(self, purchase_id: int, requester_id: int) -> Purchase:
        purchase = await self.db.get(Purchase, purchase_id, populate_existing=True)
        if purchase is None:
            raise PurchaseNotFoundError(purchase_id)
        if purchase.user_id != requester_id:
            raise ForbiddenError(
                "Only the buyer can request a refund for this purchase",
                {"purchase_id": purchase_id},
            )
        return purchase

    @staticmethod
    def _evaluate(purchase: Purchase, now: datetime) -> RefundEligibility:
        period = settings.REFUND_PERIOD_DAYS
        created_at = ensure_utc(purchase.created_at)
        deadline = created_at + timedelta(days=period)
        remaining_seconds = (deadline - ensure_utc(now)).total_seconds()
        expired = remaining_seconds < 0
        days_remaining = 0 if expired else math.ceil(remaining_seconds / SECONDS_PER_DAY)

        if purchase.status == PurchaseStatus.REFUNDED:
            refundable, message = False, "This purchase has already been refunded"
        elif purchase.status != PurchaseStatus.COMPLETED:
            refundable = False
            message = f"Only completed purchases can be refunded (status: {purchase.status.value})"
        elif expired:
            refundable = False
            message = (
                f"The {period}-day refund period ended on {deadline:%Y-%m-%d}; "
                f"this purchase can no longer be refunded"
            )
        else:
            refundable = True
            message = f"Refundable for {days_remaining} more day(s)"

        return RefundEligibility(
            purchase_id=purchase.id,
            refundable=refundable,
            status=purchase.status,
            amount=purchase.price_at_purchase,
            expired=expired,
            days_remaining=days_remaining,
            deadline=deadline,
            message=message,
        )


def get_refund_service(
    db: AsyncSession,
    notifier: Optional[Notifier] = None,
) -> RefundService:
    """Factory function to create RefundService.

    Args:
        db: Database session
        notifier: Optional notification sink

    Returns:
        Configured RefundService instance
    """
    from app.services.settlement_service import get_payment_gateways

    return RefundService(db, gateways=get_payment_gateways(), notifier=notifier)
