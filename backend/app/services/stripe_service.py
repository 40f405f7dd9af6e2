"""Stripe payment integration service.

This service provides:
- Checkout session creation for card purchases of a prompt
- Checkout session lookup for reconciliation
- Payment refunds
- Webhook signature verification and event routing into settlement
"""

import asyncio
import logging
from typing import Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ProcessorError
from app.models.purchase import PaymentProvider
from app.services.payment_gateway import (
    CheckoutRequest,
    CheckoutSession,
    PaymentGateway,
    SessionStatus,
)

logger = logging.getLogger(__name__)

# Initialize Stripe with API key from settings
stripe.api_key = settings.STRIPE_SECRET_KEY


def as_dict(obj) -> dict:
    """Plain dict view of a Stripe object.

    Current SDK objects are not dicts, so `.get` and `dict(...)` only work
    after conversion.
    """
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


class WebhookVerificationError(Exception):
    """Raised when webhook signature verification fails."""

    pass


class StripeGateway(PaymentGateway):
    """Card payments through Stripe Checkout."""

    provider = PaymentProvider.STRIPE

    def __init__(
        self,
        webhook_secret: Optional[str] = None,
        currency: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout or settings.PROCESSOR_TIMEOUT_SECONDS)
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.currency = currency or settings.STRIPE_CURRENCY

    async def _call(self, operation: str, fn, **kwargs):
        """Run a blocking Stripe SDK call in a thread with a timeout."""
        try:
            return await self._bounded(operation, asyncio.to_thread(fn, **kwargs))
        except ProcessorError:
            raise
        except stripe.StripeError as e:
            logger.error(f"Stripe API error during {operation}: {e}")
            raise ProcessorError(
                f"Card payment failed: {e.user_message or 'processor error'}",
                {"provider": self.provider.value, "operation": operation},
            )
        except Exception as e:
            logger.error(f"Unexpected Stripe failure during {operation}: {e!r}")
            raise ProcessorError(
                "Card payment failed: processor error",
                {"provider": self.provider.value, "operation": operation},
            )

    async def create_checkout(
        self,
        request: CheckoutRequest,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a Stripe checkout session for one prompt purchase.

        The purchase metadata is stored on both the session and its payment
        intent so that every webhook can be correlated without re-deriving it.

        Args:
            request: Purchase being paid for
            success_url: URL to redirect after successful payment
            cancel_url: URL to redirect if user cancels

        Returns:
            CheckoutSession with the session id and hosted checkout URL

        Raises:
            ProcessorError: If checkout session creation fails or times out
        """
        logger.info(
            f"Creating checkout session for purchase {request.purchase_id} "
            f"(prompt {request.prompt_id}, {request.price} {self.currency})"
        )

        product_data = {"name": request.title}
        if request.description:
            product_data["description"] = request.description

        session = await self._call(
            "create_checkout",
            stripe.checkout.Session.create,
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": product_data,
                        "unit_amount": request.price,
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=request.metadata,
            payment_intent_data={"metadata": request.metadata},
            client_reference_id=str(request.purchase_id),
        )

        logger.info(f"Checkout session created: {session.id} for purchase {request.purchase_id}")
        return CheckoutSession(
            session_id=session.id,
            redirect_url=session.url,
            expires_at=session.expires_at,
        )

    async def get_session_status(self, session_id: str) -> SessionStatus:
        session = as_dict(
            await self._call(
                "retrieve_checkout", stripe.checkout.Session.retrieve, id=session_id
            )
        )
        return SessionStatus(
            session_id=session_id,
            paid=session.get("payment_status") == "paid",
            open=session.get("status") == "open",
            payment_id=session.get("payment_intent"),
            metadata=dict(as_dict(session.get("metadata") or {})),
        )

    async def refund_payment(self, payment_id: str, amount: int) -> Optional[str]:
        """Refund a captured payment intent in full or in part.

        Returns:
            Stripe refund id
        """
        refund = await self._call(
            "refund", stripe.Refund.create, payment_intent=payment_id, amount=amount
        )
        logger.info(f"Stripe refund {refund.id} created for payment {payment_id} ({amount})")
        return refund.id

    def verify_webhook_signature(self, payload: bytes, signature: str) -> stripe.Event:
        """Verify Stripe webhook signature and parse event.

        Args:
            payload: Raw webhook request body
            signature: Stripe-Signature header value

        Returns:
            Verified Stripe Event object

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        if not self.webhook_secret:
            raise WebhookVerificationError("STRIPE_WEBHOOK_SECRET not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            logger.info(f"Webhook verified: {event['type']} ({event['id']})")
            return event
        except ValueError as e:
            # Invalid payload
            logger.error(f"Invalid webhook payload: {e}")
            raise WebhookVerificationError("Invalid webhook payload")
        except stripe.SignatureVerificationError as e:
            # Invalid signature
            logger.error(f"Invalid webhook signature: {e}")
            raise WebhookVerificationError("Invalid webhook signature")


class StripeService:
    """Routes verified Stripe webhook events into the settlement engine."""

    def __init__(self, db: AsyncSession, settlement_service=None, notifier=None):
        """Initialize Stripe service.

        Args:
            db: Database session for ledger operations
            settlement_service: Optional pre-built SettlementService
            notifier: Notification sink for confirmed purchases
        """
        from app.services.settlement_service import SettlementService

        self.db = db
        self.settlement = settlement_service or SettlementService(db, notifier=notifier)

    async def process_checkout_completed(self, event: stripe.Event) -> dict:
        """Process checkout.session.completed and async_payment_succeeded.

        Async payment methods complete the session before the money arrives;
        those are settled by the later async_payment_succeeded event.
        """
        session = as_dict(event["data"]["object"])
        payment_status = session.get("payment_status")

        logger.info(
            f"Processing {event['type']}: session={session['id']}, "
            f"status={payment_status}"
        )

        if payment_status != "paid":
            logger.info(
                f"Checkout session {session['id']} status is '{payment_status}', "
                f"waiting for payment confirmation"
            )
            return {"success": True, "awaiting_payment": True}

        return await self.settlement.confirm_settlement(
            PaymentProvider.STRIPE,
            session["id"],
            payment_id=session.get("payment_intent"),
            metadata=dict(as_dict(session.get("metadata") or {})),
        )

    async def process_checkout_failed(self, event: stripe.Event) -> dict:
        """Process checkout.session.expired and async_payment_failed."""
        session = event["data"]["object"]
        return await self.settlement.fail_settlement(
            PaymentProvider.STRIPE,
            correlation_id=session["id"],
            reason=event["type"],
        )

    async def process_payment_failed(self, event: stripe.Event) -> dict:
        """Process payment_intent.payment_failed via the purchase id in metadata."""
        payment_intent = as_dict(event["data"]["object"])
        error = as_dict(payment_intent.get("last_payment_error") or {})
        logger.warning(
            f"Payment failed: {payment_intent['id']}, error={error.get('message')}"
        )

        metadata = as_dict(payment_intent.get("metadata") or {})
        try:
            purchase_id = int(metadata.get("purchase_id"))
        except (TypeError, ValueError):
            if metadata.get("purchase_id"):
                logger.warning(
                    f"Ignoring malformed purchase_id {metadata['purchase_id']!r} "
                    f"on {payment_intent['id']}"
                )
            return {"success": True, "event_type": event["type"], "logged": True}

        return await self.settlement.fail_settlement(
            PaymentProvider.STRIPE,
            purchase_id=purchase_id,
            reason="payment_intent.payment_failed",
        )

    async def process_webhook_event(self, event: stripe.Event) -> dict:
        """Process a Stripe webhook event.

        Routes the event to the appropriate handler based on event type.

        Args:
            event: Verified Stripe webhook event

        Returns:
            Dict with processing results
        """
        event = as_dict(event)
        event_type = event["type"]
        event_id = event["id"]

        logger.info(f"Processing webhook event: {event_type} ({event_id})")

        # Route to appropriate handler
        if event_type in (
            "checkout.session.completed",
            "checkout.session.async_payment_succeeded",
        ):
            return await self.process_checkout_completed(event)
        elif event_type in (
            "checkout.session.expired",
            "checkout.session.async_payment_failed",
        ):
            return await self.process_checkout_failed(event)
        elif event_type == "payment_intent.payment_failed":
            return await self.process_payment_failed(event)
        elif event_type == "charge.refunded":
            # Refunds are initiated by the refund engine; this is the echo
            charge = event["data"]["object"]
            logger.info(
                f"Charge refunded: {charge['id']}, amount={charge['amount_refunded']}"
            )
            return {"success": True, "event_type": event_type, "logged": True}
        else:
            # Unknown event type - log and ignore
            logger.info(f"Ignoring unhandled webhook event type: {event_type}")
            return {"success": True, "event_type": event_type, "ignored": True}


def get_stripe_gateway() -> Optional[StripeGateway]:
    """Stripe gateway, or None when card payments are not configured."""
    if not settings.STRIPE_SECRET_KEY:
        return None
    return StripeGateway()


def get_stripe_service(db: AsyncSession, notifier=None) -> StripeService:
    """Factory function to create StripeService instance.

    Args:
        db: Database session
        notifier: Optional notification sink

    Returns:
        Configured StripeService instance
    """
    return StripeService(db, notifier=notifier)
