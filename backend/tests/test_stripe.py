"""Tests for Stripe payment integration.

This module tests:
- Checkout session creation and error mapping
- Session lookup and refunds
- Webhook signature verification
- Webhook event routing into settlement
"""

import hashlib
import hmac
import json
import time
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
import stripe
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ProcessorError
from app.models import PaymentProvider, Purchase, PurchaseStatus
from app.services.payment_gateway import CheckoutRequest
from app.services.settlement_service import SettlementService
from app.services.stripe_service import (
    StripeGateway,
    StripeService,
    WebhookVerificationError,
)
from app.utils.timeutil import utcnow

WEBHOOK_SECRET = "whsec_test_secret"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def checkout_request():
    return CheckoutRequest(
        purchase_id=42,
        prompt_id=7,
        buyer_id=3,
        seller_id=5,
        price=1200,
        title="Meeting notes summarizer",
        description="Turns a transcript into action items",
    )


@pytest.fixture
def gateway():
    return StripeGateway(webhook_secret=WEBHOOK_SECRET, currency="jpy", timeout=5.0)


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def checkout_event(event_type: str, session_id: str, payment_status: str = "paid", **session):
    return {
        "id": f"evt_{session_id}",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "payment_status": payment_status,
                "payment_intent": "pi_test_1",
                "metadata": session.pop("metadata", {}),
                **session,
            }
        },
    }


# ============================================================================
# Gateway Tests
# ============================================================================


class TestCheckoutSession:
    """Tests for checkout session creation."""

    @patch("stripe.checkout.Session.create")
    async def test_create_checkout_session_success(self, mock_create, gateway, checkout_request):
        mock_create.return_value = Mock(
            id="cs_test_123",
            url="https://checkout.stripe.com/c/pay/cs_test_123",
            expires_at=1893456000,
        )

        session = await gateway.create_checkout(
            checkout_request, "https://example.com/success", "https://example.com/cancel"
        )

        assert session.session_id == "cs_test_123"
        assert session.redirect_url == "https://checkout.stripe.com/c/pay/cs_test_123"

        call_kwargs = mock_create.call_args.kwargs
        assert call_kwargs["mode"] == "payment"
        assert call_kwargs["client_reference_id"] == "42"
        assert call_kwargs["metadata"]["purchase_id"] == "42"
        assert call_kwargs["payment_intent_data"]["metadata"]["seller_id"] == "5"
        line_item = call_kwargs["line_items"][0]["price_data"]
        assert line_item["currency"] == "jpy"
        assert line_item["unit_amount"] == 1200

    @patch("stripe.checkout.Session.create")
    async def test_create_checkout_stripe_error(self, mock_create, gateway, checkout_request):
        mock_create.side_effect = stripe.StripeError("API error")

        with pytest.raises(ProcessorError) as exc_info:
            await gateway.create_checkout(
                checkout_request, "https://example.com/success", "https://example.com/cancel"
            )

        assert exc_info.value.details["provider"] == "stripe"

    async def test_create_checkout_timeout(self, checkout_request):
        gateway = StripeGateway(webhook_secret=WEBHOOK_SECRET, timeout=0.05)

        def slow_create(**kwargs):
            time.sleep(0.5)

        with patch("stripe.checkout.Session.create", side_effect=slow_create):
            with pytest.raises(ProcessorError) as exc_info:
                await gateway.create_checkout(
                    checkout_request, "https://example.com/success", "https://example.com/cancel"
                )

        assert "did not respond in time" in exc_info.value.message


class TestSessionLookupAndRefund:
    @patch("stripe.checkout.Session.retrieve")
    async def test_paid_session(self, mock_retrieve, gateway):
        mock_retrieve.return_value = {
            "id": "cs_test_123",
            "status": "complete",
            "payment_status": "paid",
            "payment_intent": "pi_test_1",
            "metadata": {"purchase_id": "42"},
        }

        status = await gateway.get_session_status("cs_test_123")

        assert status.paid is True
        assert status.open is False
        assert status.payment_id == "pi_test_1"
        assert status.metadata == {"purchase_id": "42"}

    @patch("stripe.checkout.Session.retrieve")
    async def test_paid_session_sdk_object(self, mock_retrieve, gateway):
        mock_retrieve.return_value = stripe.checkout.Session.construct_from(
            {
                "id": "cs_test_123",
                "object": "checkout.session",
                "status": "complete",
                "payment_status": "paid",
                "payment_intent": "pi_test_1",
                "metadata": {"purchase_id": "42"},
            },
            "sk_test",
        )

        status = await gateway.get_session_status("cs_test_123")

        assert status.paid is True
        assert status.payment_id == "pi_test_1"
        assert status.metadata == {"purchase_id": "42"}

    @patch("stripe.checkout.Session.retrieve", side_effect=AttributeError("unexpected shape"))
    async def test_unexpected_sdk_failure_is_processor_error(self, mock_retrieve, gateway):
        with pytest.raises(ProcessorError) as exc_info:
            await gateway.get_session_status("cs_test_123")

        assert exc_info.value.details["operation"] == "retrieve_checkout"

    @patch("stripe.Refund.create")
    async def test_refund(self, mock_refund, gateway):
        mock_refund.return_value = Mock(id="re_test_1")

        refund_id = await gateway.refund_payment("pi_test_1", 1200)

        assert refund_id == "re_test_1"
        mock_refund.assert_called_once_with(payment_intent="pi_test_1", amount=1200)


# ============================================================================
# Webhook Signature Verification Tests
# ============================================================================


class TestWebhookVerification:
    """Tests for webhook signature verification."""

    def test_verify_webhook_signature_success(self, gateway):
        payload = json.dumps(
            {"id": "evt_test", "object": "event", "type": "checkout.session.completed", "data": {"object": {}}}
        ).encode()

        event = gateway.verify_webhook_signature(payload, sign(payload))

        assert event["id"] == "evt_test"
        assert event["type"] == "checkout.session.completed"

    def test_verify_webhook_invalid_signature(self, gateway):
        payload = json.dumps({"id": "evt_test", "object": "event", "type": "test"}).encode()

        with pytest.raises(WebhookVerificationError):
            gateway.verify_webhook_signature(payload, sign(payload, secret="whsec_other"))

    def test_verify_webhook_stale_timestamp(self, gateway):
        payload = json.dumps({"id": "evt_test", "object": "event", "type": "test"}).encode()
        header = sign(payload, timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookVerificationError):
            gateway.verify_webhook_signature(payload, header)

    def test_verify_webhook_invalid_payload(self, gateway):
        with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
            with pytest.raises(WebhookVerificationError) as exc_info:
                gateway.verify_webhook_signature(b"not json", "t=1,v1=abc")

        assert "Invalid webhook payload" in str(exc_info.value)

    def test_verify_webhook_missing_secret(self):
        gateway = StripeGateway()
        gateway.webhook_secret = ""

        with pytest.raises(WebhookVerificationError) as exc_info:
            gateway.verify_webhook_signature(b"{}", "t=1,v1=abc")

        assert "not configured" in str(exc_info.value)


# ============================================================================
# Webhook Event Processing Tests
# ============================================================================


@pytest.fixture
def settlement(db_session: AsyncSession, gateways, notifier) -> SettlementService:
    return SettlementService(db_session, gateways=gateways, notifier=notifier)


@pytest.fixture
def stripe_service(db_session: AsyncSession, settlement) -> StripeService:
    return StripeService(db_session, settlement_service=settlement)


@pytest.fixture
def pending_purchase(settlement, make_user, make_prompt):
    """Pending card purchase: (purchase_id, session_id, seller_id)."""

    async def _make():
        buyer_id = await make_user("buyer")
        seller_id = await make_user("seller")
        prompt_id = await make_prompt(seller_id, price=1000)
        result = await settlement.settle_purchase(buyer_id, prompt_id, "stripe")
        return result.purchase_id, "stripe_sess_1", seller_id

    return _make


async def purchase_status(db: AsyncSession, purchase_id: int) -> PurchaseStatus:
    purchase = await db.get(Purchase, purchase_id, populate_existing=True)
    return purchase.status


class TestWebhookProcessing:
    """Tests for webhook event processing."""

    async def test_checkout_completed_settles(self, stripe_service, pending_purchase, db_session):
        purchase_id, session_id, _ = await pending_purchase()

        result = await stripe_service.process_webhook_event(
            checkout_event("checkout.session.completed", session_id)
        )

        assert result["success"] is True
        assert result["seller_revenue"] == 800
        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.COMPLETED

    async def test_duplicate_event(self, stripe_service, pending_purchase):
        _, session_id, _ = await pending_purchase()
        event = checkout_event("checkout.session.completed", session_id)

        await stripe_service.process_webhook_event(event)
        result = await stripe_service.process_webhook_event(event)

        assert result["duplicate"] is True

    async def test_unpaid_checkout_waits(self, stripe_service, pending_purchase, db_session):
        purchase_id, session_id, _ = await pending_purchase()

        result = await stripe_service.process_webhook_event(
            checkout_event("checkout.session.completed", session_id, payment_status="unpaid")
        )

        assert result["awaiting_payment"] is True
        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.PENDING

    async def test_async_payment_succeeded(self, stripe_service, pending_purchase, db_session):
        purchase_id, session_id, _ = await pending_purchase()

        await stripe_service.process_webhook_event(
            checkout_event("checkout.session.async_payment_succeeded", session_id)
        )

        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.COMPLETED

    async def test_expired_session_fails_purchase(self, stripe_service, pending_purchase, db_session):
        purchase_id, session_id, _ = await pending_purchase()

        result = await stripe_service.process_webhook_event(
            checkout_event("checkout.session.expired", session_id, payment_status="unpaid")
        )

        assert result["failed"] is True
        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.FAILED

    async def test_payment_intent_failed(self, stripe_service, pending_purchase, db_session):
        purchase_id, _, _ = await pending_purchase()
        event = {
            "id": "evt_pi_failed",
            "type": "payment_intent.payment_failed",
            "data": {
                "object": {
                    "id": "pi_test_1",
                    "metadata": {"purchase_id": str(purchase_id)},
                    "last_payment_error": {"message": "Your card was declined."},
                }
            },
        }

        await stripe_service.process_webhook_event(event)

        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.FAILED

    async def test_unknown_session_is_acknowledged(self, stripe_service):
        result = await stripe_service.process_webhook_event(
            checkout_event("checkout.session.completed", "cs_unknown")
        )

        assert result["success"] is True
        assert result["ignored"] is True

    async def test_unhandled_event_type(self, stripe_service):
        result = await stripe_service.process_webhook_event(
            {"id": "evt_1", "type": "customer.created", "data": {"object": {}}}
        )

        assert result == {"success": True, "event_type": "customer.created", "ignored": True}

    async def test_checkout_completed_sdk_event(self, stripe_service, pending_purchase, db_session):
        purchase_id, session_id, _ = await pending_purchase()
        payload = checkout_event(
            "checkout.session.completed", session_id, metadata={"purchase_id": str(purchase_id)}
        )
        payload["object"] = "event"
        payload["data"]["object"]["object"] = "checkout.session"
        event = stripe.Event.construct_from(payload, "sk_test")

        result = await stripe_service.process_webhook_event(event)

        assert result["seller_revenue"] == 800
        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.COMPLETED

    async def test_payment_failed_with_malformed_purchase_id(
        self, stripe_service, pending_purchase, db_session
    ):
        purchase_id, _, _ = await pending_purchase()
        event = {
            "id": "evt_pi_failed",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_test_1", "metadata": {"purchase_id": "abc"}}},
        }

        result = await stripe_service.process_webhook_event(event)

        assert result["logged"] is True
        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.PENDING


class TestReconciliationWithStripe:
    @patch("stripe.checkout.Session.retrieve")
    async def test_sweep_reads_sdk_sessions(
        self, mock_retrieve, db_session, gateway, pending_purchase, notifier
    ):
        purchase_id, session_id, _ = await pending_purchase()
        await db_session.execute(
            update(Purchase)
            .where(Purchase.id == purchase_id)
            .values(created_at=utcnow() - timedelta(days=2))
        )
        await db_session.commit()
        mock_retrieve.return_value = stripe.checkout.Session.construct_from(
            {
                "id": session_id,
                "object": "checkout.session",
                "status": "complete",
                "payment_status": "paid",
                "payment_intent": "pi_test_1",
                "metadata": {"purchase_id": str(purchase_id)},
            },
            "sk_test",
        )
        sweeper = SettlementService(
            db_session, gateways={PaymentProvider.STRIPE: gateway}, notifier=notifier
        )

        result = await sweeper.reconcile_pending_purchases()

        assert result == {"checked": 1, "confirmed": 1, "failed": 0, "skipped": 0}
        assert await purchase_status(db_session, purchase_id) == PurchaseStatus.COMPLETED
