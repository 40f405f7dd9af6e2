"""Settlement engine for prompt purchases.

This service provides business logic for:
- Settling a purchase through one of three rails (credits, card, USDC)
- Confirming or failing deferred settlements from processor webhooks
- Reconciling pending purchases whose confirmation never arrived
- Releasing seller wallet revenue once the refund window has closed

Purchase uniqueness is enforced by the ``uq_purchases_active_user_prompt``
partial unique index; the lookup before insert only produces a friendlier
error on the common path. Processor calls never run inside an open ledger
transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AlreadyPurchasedError,
    InsufficientFundsError,
    LedgerError,
    NotPublishedError,
    ProcessorError,
    ProcessorUnavailableError,
    PromptNotFoundError,
    SelfPurchaseForbiddenError,
    UnsupportedProviderError,
)
from app.models.credit_history import CreditHistoryType
from app.models.prompt import Prompt
from app.models.purchase import (
    ACTIVE_PURCHASE_INDEX,
    ACTIVE_PURCHASE_STATUSES,
    PaymentProvider,
    Purchase,
    PurchaseStatus,
)
from app.services.ledger_service import LedgerService
from app.services.notification_service import Notifier, get_notifier
from app.services.payment_gateway import CheckoutRequest, PaymentGateway
from app.utils.money import seller_share
from app.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFERRED_PROVIDERS = (PaymentProvider.STRIPE, PaymentProvider.ORYNTH)


def is_active_purchase_conflict(error: IntegrityError) -> bool:
    """True when ``error`` is a violation of the one-active-purchase index.

    PostgreSQL names the index; SQLite names the indexed columns.
    """
    message = str(error.orig)
    return (
        ACTIVE_PURCHASE_INDEX in message
        or "purchases.user_id, purchases.prompt_id" in message
    )


@dataclass
class SettlementResult:
    """Outcome of ``settle_purchase``.

    ``redirect_url`` is set for deferred rails; the purchase then stays
    pending until the processor confirms payment.
    """

    purchase_id: int
    status: PurchaseStatus
    provider: PaymentProvider
    price: int
    redirect_url: Optional[str] = None


class SettlementService:
    """Service for settling prompt purchases."""

    def __init__(
        self,
        db: AsyncSession,
        gateways: Optional[dict[PaymentProvider, Optional[PaymentGateway]]] = None,
        notifier: Optional[Notifier] = None,
    ):
        """Initialize the settlement service.

        Args:
            db: Database session (the ledger store)
            gateways: Payment gateway per deferred rail; a missing or None
                entry means the rail is unavailable
            notifier: Notification sink used after commit
        """
        self.db = db
        self.ledger = LedgerService(db)
        self.gateways = gateways if gateways is not None else {}
        self.notifier = notifier or get_notifier()

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    async def settle_purchase(
        self,
        buyer_id: int,
        prompt_id: int,
        provider: Union[PaymentProvider, str] = PaymentProvider.CREDITS,
    ) -> SettlementResult:
        """Purchase a prompt.

        Preconditions are checked in order: prompt exists and is published,
        no active purchase exists, buyer is not the owner, and (credits rail)
        the balance covers the price.

        Args:
            buyer_id: The buyer's user ID
            prompt_id: The prompt being bought
            provider: Payment rail

        Returns:
            SettlementResult (completed, or pending with a redirect URL)

        Raises:
            UnsupportedProviderError: Unknown payment rail
            PromptNotFoundError: Prompt does not exist
            NotPublishedError: Prompt is not published
            AlreadyPurchasedError: Active purchase exists
            SelfPurchaseForbiddenError: Buyer owns the prompt
            InsufficientFundsError: Credits do not cover the price
            ProcessorUnavailableError: Rail not configured
            ProcessorError: Processor rejected or timed out
            LedgerError: Ledger write failed and was rolled back
        """
        provider = self._parse_provider(provider)
        prompt = await self._load_purchasable_prompt(prompt_id)

        existing = await self._find_active_purchase(buyer_id, prompt_id)
        if existing is not None:
            raise AlreadyPurchasedError(buyer_id, prompt_id)

        if prompt.owner_id == buyer_id:
            raise SelfPurchaseForbiddenError(prompt_id)

        price = prompt.price_jpy

        # Free prompts never go through a processor
        if provider == PaymentProvider.CREDITS or price == 0:
            if price > 0:
                available = await self.ledger.get_credits(buyer_id)
                if available < price:
                    raise InsufficientFundsError(required=price, available=available)
            return await self._settle_with_credits(buyer_id, prompt)

        return await self._start_deferred_settlement(buyer_id, prompt, provider)

    async def _settle_with_credits(self, buyer_id: int, prompt: Prompt) -> SettlementResult:
        prompt_id = prompt.id
        seller_id = prompt.owner_id
        prompt_title = prompt.title
        price = prompt.price_jpy
        share = seller_share(price)
        title = prompt_title[:30]

        purchase = Purchase(
            user_id=buyer_id,
            prompt_id=prompt_id,
            seller_id=seller_id,
            price_at_purchase=price,
            status=PurchaseStatus.COMPLETED,
            payment_provider=PaymentProvider.CREDITS,
            completed_at=utcnow(),
        )

        try:
            self.db.add(purchase)
            # Claims the (buyer, prompt) slot before any balance moves
            await self.db.flush()
            purchase_id = purchase.id

            if price > 0:
                await self.ledger.lock_users(buyer_id, seller_id)
                await self.ledger.debit_credits(
                    buyer_id,
                    price,
                    CreditHistoryType.PURCHASE,
                    f"Prompt purchase: {title}",
                    purchase_id,
                )
                if share > 0:
                    await self.ledger.credit_credits(
                        seller_id,
                        share,
                        CreditHistoryType.SALE,
                        f"Prompt sale: {title}",
                        purchase_id,
                    )

            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not is_active_purchase_conflict(e):
                logger.error(
                    f"Credits settlement violated a constraint and was rolled back: "
                    f"buyer={buyer_id}, prompt={prompt_id}, seller={seller_id}, "
                    f"price={price}: {e}"
                )
                raise LedgerError(
                    "Purchase could not be completed",
                    {"prompt_id": prompt_id, "buyer_id": buyer_id},
                )
            logger.info(
                f"Concurrent purchase of prompt {prompt_id} by user {buyer_id} rejected"
            )
            raise AlreadyPurchasedError(buyer_id, prompt_id)
        except InsufficientFundsError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Credits settlement failed and was rolled back: buyer={buyer_id}, "
                f"prompt={prompt_id}, seller={seller_id}, price={price}, "
                f"seller_share={share}: {e}"
            )
            raise LedgerError(
                "Purchase could not be completed",
                {"prompt_id": prompt_id, "buyer_id": buyer_id},
            )

        logger.info(
            f"Purchase {purchase_id} settled with credits: buyer={buyer_id}, "
            f"prompt={prompt_id}, price={price}, seller_share={share}"
        )

        await self._notify_purchase(buyer_id, seller_id, prompt_id, prompt_title, price)

        return SettlementResult(
            purchase_id=purchase_id,
            status=PurchaseStatus.COMPLETED,
            provider=PaymentProvider.CREDITS,
            price=price,
        )

    async def _start_deferred_settlement(
        self,
        buyer_id: int,
        prompt: Prompt,
        provider: PaymentProvider,
    ) -> SettlementResult:
        gateway = self.gateways.get(provider)
        if gateway is None:
            raise ProcessorUnavailableError(provider.value)

        prompt_id = prompt.id
        seller_id = prompt.owner_id
        price = prompt.price_jpy
        request = CheckoutRequest(
            purchase_id=0,
            prompt_id=prompt_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            price=price,
            title=prompt.title,
            description=prompt.short_description,
        )

        purchase = Purchase(
            user_id=buyer_id,
            prompt_id=prompt_id,
            seller_id=seller_id,
            price_at_purchase=price,
            status=PurchaseStatus.PENDING,
            payment_provider=provider,
        )

        try:
            self.db.add(purchase)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if is_active_purchase_conflict(e):
                raise AlreadyPurchasedError(buyer_id, prompt_id)
            logger.error(
                f"Could not create pending purchase: buyer={buyer_id}, "
                f"prompt={prompt_id}, provider={provider.value}: {e}"
            )
            raise LedgerError(
                "Purchase could not be started",
                {"prompt_id": prompt_id, "buyer_id": buyer_id},
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Could not create pending purchase: buyer={buyer_id}, "
                f"prompt={prompt_id}, provider={provider.value}: {e}"
            )
            raise LedgerError(
                "Purchase could not be started",
                {"prompt_id": prompt_id, "buyer_id": buyer_id},
            )

        purchase_id = purchase.id
        request.purchase_id = purchase_id
        success_url = f"{settings.PUBLIC_BASE_URL}/checkout/success?purchase_id={purchase_id}"
        if provider == PaymentProvider.STRIPE:
            success_url += "&session_id={CHECKOUT_SESSION_ID}"
        cancel_url = f"{settings.PUBLIC_BASE_URL}/prompts/{prompt_id}"

        # No transaction is open while the processor is called
        try:
            session = await gateway.create_checkout(request, success_url, cancel_url)
        except ProcessorError:
            await self._mark_failed(purchase_id, "checkout creation failed")
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error creating {provider.value} checkout for "
                f"purchase {purchase_id}: {e}"
            )
            await self._mark_failed(purchase_id, "checkout creation failed")
            raise ProcessorError(
                "Payment could not be started", {"provider": provider.value}
            )

        try:
            await self.db.execute(
                update(Purchase)
                .where(Purchase.id == purchase_id)
                .values(processor_session_id=session.session_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            # The purchase id travels in the processor metadata, so a later
            # confirmation can still find it.
            await self.db.rollback()
            logger.error(
                f"Could not store session {session.session_id} on purchase "
                f"{purchase_id}: {e}"
            )

        logger.info(
            f"Purchase {purchase_id} pending via {provider.value}: buyer={buyer_id}, "
            f"prompt={prompt_id}, price={price}, session={session.session_id}"
        )

        return SettlementResult(
            purchase_id=purchase_id,
            status=PurchaseStatus.PENDING,
            provider=provider,
            price=price,
            redirect_url=session.redirect_url,
        )

    # ------------------------------------------------------------------
    # Deferred confirmation
    # ------------------------------------------------------------------

    async def confirm_settlement(
        self,
        provider: PaymentProvider,
        correlation_id: str,
        payment_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        """Complete a deferred settlement exactly once.

        Unknown correlation ids and duplicate deliveries are absorbed and
        reported as success so the processor does not retry.

        Args:
            provider: Rail that confirmed the payment
            correlation_id: Processor session / payment request id
            payment_id: Processor payment id (payment intent, tx id)
            metadata: Metadata stored on the session at checkout time

        Returns:
            Dict with processing results

        Raises:
            LedgerError: Ledger write failed and was rolled back
        """
        purchase = await self._find_by_correlation(provider, correlation_id, metadata)
        if purchase is None:
            logger.warning(
                f"No purchase for {provider.value} session {correlation_id}; ignoring"
            )
            return {"success": True, "ignored": True, "reason": "unknown_correlation_id"}

        purchase_id = purchase.id
        if purchase.status == PurchaseStatus.COMPLETED:
            logger.info(
                f"Duplicate confirmation for purchase {purchase_id} "
                f"({provider.value} session {correlation_id})"
            )
            return {"success": True, "duplicate": True, "purchase_id": purchase_id}

        if purchase.status == PurchaseStatus.REFUNDED:
            logger.warning(f"Confirmation for refunded purchase {purchase_id}; ignoring")
            return {"success": True, "ignored": True, "purchase_id": purchase_id}

        self._check_metadata(purchase, metadata)

        buyer_id = purchase.user_id
        seller_id = purchase.seller_id
        prompt_id = purchase.prompt_id
        price = purchase.price_at_purchase
        share = seller_share(price)
        prompt_title = await self.db.scalar(select(Prompt.title).where(Prompt.id == prompt_id))
        prompt_title = prompt_title or f"prompt {prompt_id}"
        title = prompt_title[:30]

        values = {"status": PurchaseStatus.COMPLETED, "completed_at": utcnow()}
        if payment_id:
            values["processor_payment_id"] = payment_id
        if purchase.processor_session_id is None:
            values["processor_session_id"] = correlation_id

        try:
            result = await self.db.execute(
                update(Purchase)
                .where(
                    Purchase.id == purchase_id,
                    Purchase.status.in_([PurchaseStatus.PENDING, PurchaseStatus.FAILED]),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # A concurrent delivery completed it first
                await self.db.rollback()
                logger.info(f"Purchase {purchase_id} already confirmed concurrently")
                return {"success": True, "duplicate": True, "purchase_id": purchase_id}

            if share > 0:
                await self.ledger.add_pending_revenue(
                    seller_id, share, f"Sale of {title} (pending)", purchase_id
                )
                await self.ledger.credit_credits(
                    seller_id,
                    share,
                    CreditHistoryType.SALE,
                    f"Prompt sale ({provider.value}): {title}",
                    purchase_id,
                )
            self.ledger.record_credit_audit(
                buyer_id,
                CreditHistoryType.PURCHASE,
                f"Prompt purchase ({provider.value}): {title}",
                purchase_id,
            )

            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not is_active_purchase_conflict(e):
                logger.error(
                    f"Settlement confirmation violated a constraint and was rolled "
                    f"back: purchase={purchase_id}, buyer={buyer_id}, "
                    f"seller={seller_id}, price={price}: {e}"
                )
                raise LedgerError(
                    "Settlement confirmation failed", {"purchase_id": purchase_id}
                )
            # A failed purchase was retried by the buyer and the retry already
            # holds the active slot; the buyer has paid twice.
            logger.critical(
                f"Payment confirmed for superseded purchase {purchase_id} "
                f"(buyer={buyer_id}, prompt={prompt_id}, price={price}, "
                f"payment={payment_id}); manual refund required: {e}"
            )
            return {
                "success": False,
                "conflict": True,
                "purchase_id": purchase_id,
                "reason": "active_purchase_exists",
            }
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Settlement confirmation failed and was rolled back: "
                f"purchase={purchase_id}, buyer={buyer_id}, seller={seller_id}, "
                f"price={price}, seller_share={share}: {e}"
            )
            raise LedgerError(
                "Settlement confirmation failed", {"purchase_id": purchase_id}
            )

        logger.info(
            f"Purchase {purchase_id} confirmed via {provider.value}: "
            f"seller={seller_id} +{share} pending"
        )

        await self._notify_purchase(buyer_id, seller_id, prompt_id, prompt_title, price)

        return {
            "success": True,
            "purchase_id": purchase_id,
            "seller_revenue": share,
        }

    async def fail_settlement(
        self,
        provider: PaymentProvider,
        correlation_id: Optional[str] = None,
        purchase_id: Optional[int] = None,
        reason: str = "payment failed",
    ) -> dict:
        """Mark a pending purchase failed; a completed one is never downgraded.

        Returns:
            Dict with processing results
        """
        if correlation_id is not None:
            purchase = await self._find_by_correlation(provider, correlation_id, None)
        else:
            purchase = await self.db.get(Purchase, purchase_id, populate_existing=True)

        if purchase is None or purchase.payment_provider != provider:
            logger.warning(
                f"No {provider.value} purchase for failure event "
                f"(session={correlation_id}, purchase={purchase_id}); ignoring"
            )
            return {"success": True, "ignored": True, "reason": "unknown_correlation_id"}

        found_id = purchase.id
        if purchase.status != PurchaseStatus.PENDING:
            logger.info(
                f"Ignoring failure ({reason}) for purchase {found_id} "
                f"in status {purchase.status.value}"
            )
            return {"success": True, "ignored": True, "purchase_id": found_id}

        changed = await self._mark_failed(found_id, reason)
        return {"success": True, "purchase_id": found_id, "failed": changed}

    # ------------------------------------------------------------------
    # Scheduled sweeps
    # ------------------------------------------------------------------

    async def reconcile_pending_purchases(self, now: Optional[datetime] = None) -> dict:
        """Resolve pending purchases older than ``PENDING_PURCHASE_TTL_MINUTES``.

        Paid sessions are confirmed; anything else is failed so the buyer
        can retry. Purchases whose processor cannot be reached are left for
        the next run.

        Returns:
            Dict with checked, confirmed, failed and skipped counts
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=settings.PENDING_PURCHASE_TTL_MINUTES)

        result = await self.db.execute(
            select(Purchase.id, Purchase.payment_provider, Purchase.processor_session_id)
            .where(Purchase.status == PurchaseStatus.PENDING, Purchase.created_at < cutoff)
            .order_by(Purchase.created_at)
        )
        stale = result.all()

        confirmed = failed = skipped = 0
        for purchase_id, provider, session_id in stale:
            gateway = self.gateways.get(provider)

            if session_id is None:
                if await self._mark_failed(purchase_id, "no checkout session"):
                    failed += 1
                continue

            if gateway is None:
                logger.warning(
                    f"Cannot reconcile purchase {purchase_id}: "
                    f"{provider.value} is not configured"
                )
                skipped += 1
                continue

            try:
                status = await gateway.get_session_status(session_id)
            except ProcessorError as e:
                logger.warning(f"Reconciliation lookup failed for purchase {purchase_id}: {e}")
                skipped += 1
                continue

            if status.paid:
                outcome = await self.confirm_settlement(
                    provider, session_id, payment_id=status.payment_id, metadata=status.metadata
                )
                if outcome.get("success") and not (
                    outcome.get("duplicate") or outcome.get("ignored")
                ):
                    confirmed += 1
            elif await self._mark_failed(purchase_id, "checkout expired"):
                failed += 1

        logger.info(
            f"Pending purchase reconciliation: {len(stale)} stale, "
            f"{confirmed} confirmed, {failed} failed, {skipped} skipped"
        )
        return {"checked": len(stale), "confirmed": confirmed, "failed": failed, "skipped": skipped}

    async def release_pending_revenue(self, now: Optional[datetime] = None) -> dict:
        """Move seller revenue from pending to withdrawable balance.

        Applies to completed processor-settled purchases whose refund window
        has closed, once per purchase.

        Returns:
            Dict with released_count and total_amount
        """
        now = now or utcnow()
        deadline = now - timedelta(days=settings.REFUND_PERIOD_DAYS)

        result = await self.db.execute(
            select(Purchase.id, Purchase.seller_id, Purchase.price_at_purchase).where(
                Purchase.status == PurchaseStatus.COMPLETED,
                Purchase.payment_provider.in_(DEFERRED_PROVIDERS),
                Purchase.revenue_released_at.is_(None),
                Purchase.created_at < deadline,
            )
        )
        eligible = result.all()

        released_count = 0
        total_amount = 0
        for purchase_id, seller_id, price in eligible:
            try:
                marked = await self.db.execute(
                    update(Purchase)
                    .where(
                        Purchase.id == purchase_id,
                        Purchase.status == PurchaseStatus.COMPLETED,
                        Purchase.revenue_released_at.is_(None),
                    )
                    .values(revenue_released_at=now)
                    .execution_options(synchronize_session=False)
                )
                if marked.rowcount != 1:
                    await self.db.rollback()
                    continue

                wallet = await self.ledger.get_wallet(seller_id, lock=True)
                amount = min(seller_share(price), wallet.pending_balance) if wallet else 0
                if amount > 0:
                    wallet.pending_balance -= amount
                    wallet.balance += amount
                    wallet.total_earned += amount

                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    f"Failed to release revenue for purchase {purchase_id} "
                    f"(seller={seller_id}): {e}"
                )
                continue

            released_count += 1
            total_amount += amount

        logger.info(
            f"Released pending revenue for {released_count} purchases "
            f"({total_amount} JPY)"
        )
        return {"released_count": released_count, "total_amount": total_amount}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_provider(provider: Union[PaymentProvider, str]) -> PaymentProvider:
        try:
            return PaymentProvider(provider)
        except ValueError:
            raise UnsupportedProviderError(str(provider))

    async def _load_purchasable_prompt(self, prompt_id: int) -> Prompt:
        prompt = await self.db.get(Prompt, prompt_id)
        if prompt is None:
            raise PromptNotFoundError(prompt_id)
        if not prompt.is_published:
            raise NotPublishedError(prompt_id)
        return prompt

    async def _find_active_purchase(self, buyer_id: int, prompt_id: int) -> Optional[Purchase]:
        result = await self.db.execute(
            select(Purchase).where(
                Purchase.user_id == buyer_id,
                Purchase.prompt_id == prompt_id,
                Purchase.status.in_(ACTIVE_PURCHASE_STATUSES),
            )
        )
        return result.scalars().first()

    async def _find_by_correlation(
        self,
        provider: PaymentProvider,
        correlation_id: str,
        metadata: Optional[dict],
    ) -> Optional[Purchase]:
        result = await self.db.execute(
            select(Purchase)
            .where(
                Purchase.payment_provider == provider,
                Purchase.processor_session_id == correlation_id,
            )
            .execution_options(populate_existing=True)
        )
        purchase = result.scalar_one_or_none()
        if purchase is not None or not metadata:
            return purchase

        # Session id was never stored; fall back to the purchase id in metadata
        try:
            purchase_id = int(metadata.get("purchase_id"))
        except (TypeError, ValueError):
            return None
        purchase = await self.db.get(Purchase, purchase_id, populate_existing=True)
        if (
            purchase is None
            or purchase.payment_provider != provider
            or purchase.processor_session_id not in (None, correlation_id)
        ):
            return None
        return purchase

    @staticmethod
    def _check_metadata(purchase: Purchase, metadata: Optional[dict]) -> None:
        if not metadata:
            return
        price = metadata.get("price")
        seller = metadata.get("seller_id")
        if (price is not None and str(price) != str(purchase.price_at_purchase)) or (
            seller is not None and str(seller) != str(purchase.seller_id)
        ):
            logger.warning(
                f"Processor metadata for purchase {purchase.id} does not match the "
                f"stored snapshot (metadata={metadata}); settling with the snapshot"
            )

    async def _mark_failed(self, purchase_id: int, reason: str) -> bool:
        """Move a pending purchase to failed, releasing the buyer's slot."""
        try:
            result = await self.db.execute(
                update(Purchase)
                .where(Purchase.id == purchase_id, Purchase.status == PurchaseStatus.PENDING)
                .values(status=PurchaseStatus.FAILED)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Could not mark purchase {purchase_id} failed ({reason}): {e}")
            return False

        changed = result.rowcount == 1
        if changed:
            logger.info(f"Purchase {purchase_id} failed: {reason}")
        return changed

    async def _notify_purchase(
        self,
        buyer_id: int,
        seller_id: int,
        prompt_id: int,
        prompt_title: str,
        price: int,
    ) -> None:
        try:
            await self.notifier.purchase_completed(
                buyer_id, seller_id, prompt_id, prompt_title, price
            )
        except Exception as e:
            logger.warning(f"Purchase notification for prompt {prompt_id} failed: {e}")


@lru_cache
def get_payment_gateways() -> dict[PaymentProvider, Optional[PaymentGateway]]:
    """Resolve the configured processor gateways once per process."""
    from app.services.orynth_service import get_orynth_gateway
    from app.services.stripe_service import get_stripe_gateway

    gateways = {
        PaymentProvider.STRIPE: get_stripe_gateway(),
        PaymentProvider.ORYNTH: get_orynth_gateway(),
    }
    for provider, gateway in gateways.items():
        if gateway is None:
            logger.info(f"{provider.value} payments are not configured")
    return gateways


def get_settlement_service(
    db: AsyncSession,
    notifier: Optional[Notifier] = None,
) -> SettlementService:
    """Factory function to create SettlementService.

    Args:
        db: Database session
        notifier: Optional notification sink

    Returns:
        Configured SettlementService instance
    """
    return SettlementService(db, gateways=get_payment_gateways(), notifier=notifier)
