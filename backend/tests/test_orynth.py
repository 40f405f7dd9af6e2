"""Tests for the Orynth (USDC) rail and the money helpers it relies on."""

import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ProcessorError
from app.models import Purchase, PurchaseStatus
from app.services.orynth_service import OrynthGateway, OrynthService, sign_orynth_payload
from app.services.payment_gateway import CheckoutRequest
from app.services.settlement_service import SettlementService
from app.services.stripe_service import WebhookVerificationError
from app.utils.money import jpy_to_usdc, platform_fee, seller_share

SECRET = "orynth_whsec_test"


def make_gateway(handler) -> OrynthGateway:
    return OrynthGateway(
        base_url="https://orynth.test/v1",
        api_key="ok_test",
        project_id="proj_1",
        platform_wallet_id="wallet_platform",
        webhook_secret=SECRET,
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def checkout_request():
    return CheckoutRequest(
        purchase_id=42, prompt_id=7, buyer_id=3, seller_id=5, price=1000, title="Summarizer"
    )


class TestMoney:
    def test_seller_share_is_floored(self):
        assert seller_share(500) == 400
        assert seller_share(333) == 266
        assert seller_share(0) == 0

    def test_platform_fee_complements_share(self):
        assert seller_share(999) + platform_fee(999) == 999

    def test_jpy_to_usdc(self):
        assert jpy_to_usdc(1000, 0.0067) == Decimal("6.70")
        assert jpy_to_usdc(75, 0.0067) == Decimal("0.50")


class TestOrynthGateway:
    async def test_create_checkout(self, checkout_request):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                201, json={"id": "pr_1", "paymentUrl": "https://orynth.test/pay/pr_1"}
            )

        session = await make_gateway(handler).create_checkout(
            checkout_request, "https://example.com/ok", "https://example.com/cancel"
        )

        assert session.session_id == "pr_1"
        assert session.redirect_url == "https://orynth.test/pay/pr_1"
        assert seen["path"] == "/v1/payment-requests"
        assert seen["auth"] == "Bearer ok_test"
        assert seen["body"]["amount"] == str(jpy_to_usdc(1000))
        assert seen["body"]["currency"] == "USDC"
        assert seen["body"]["metadata"]["purchase_id"] == "42"

    async def test_error_status_maps_to_processor_error(self, checkout_request):
        gateway = make_gateway(lambda request: httpx.Response(502, text="bad gateway"))

        with pytest.raises(ProcessorError) as exc_info:
            await gateway.create_checkout(checkout_request, "ok", "cancel")

        assert exc_info.value.details["provider"] == "orynth"

    async def test_network_error_maps_to_processor_error(self, checkout_request):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProcessorError):
            await make_gateway(handler).create_checkout(checkout_request, "ok", "cancel")

    async def test_incomplete_response(self, checkout_request):
        gateway = make_gateway(lambda request: httpx.Response(200, json={"id": "pr_1"}))

        with pytest.raises(ProcessorError):
            await gateway.create_checkout(checkout_request, "ok", "cancel")

    async def test_session_status(self):
        gateway = make_gateway(
            lambda request: httpx.Response(
                200,
                json={"id": "pr_1", "status": "completed", "txId": "0xabc", "metadata": {"purchase_id": "42"}},
            )
        )

        status = await gateway.get_session_status("pr_1")

        assert status.paid is True
        assert status.payment_id == "0xabc"
        assert status.metadata["purchase_id"] == "42"

    async def test_refund(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": "rf_1"})

        refund_id = await make_gateway(handler).refund_payment("0xabc", 1000)

        assert refund_id == "rf_1"
        assert seen["path"] == "/v1/payments/0xabc/refunds"


class TestOrynthSignature:
    def test_valid_signature(self):
        payload = json.dumps({"type": "payment.completed", "data": {"id": "pr_1"}}).encode()
        gateway = make_gateway(lambda request: httpx.Response(200))

        event = gateway.verify_webhook_signature(payload, sign_orynth_payload(payload, SECRET))

        assert event["data"]["id"] == "pr_1"

    def test_tampered_body(self):
        payload = json.dumps({"type": "payment.completed", "data": {"id": "pr_1"}}).encode()
        signature = sign_orynth_payload(payload, SECRET)
        gateway = make_gateway(lambda request: httpx.Response(200))

        with pytest.raises(WebhookVerificationError):
            gateway.verify_webhook_signature(payload.replace(b"pr_1", b"pr_2"), signature)

    def test_missing_signature(self):
        gateway = make_gateway(lambda request: httpx.Response(200))

        with pytest.raises(WebhookVerificationError):
            gateway.verify_webhook_signature(b"{}", None)


class TestOrynthWebhookProcessing:
    async def test_completed_and_expired_events(
        self, db_session: AsyncSession, gateways, notifier, make_user, make_prompt
    ):
        settlement = SettlementService(db_session, gateways=gateways, notifier=notifier)
        service = OrynthService(db_session, settlement_service=settlement)
        seller_id = await make_user("seller")
        prompt_id = await make_prompt(seller_id, price=1000)
        paid_buyer = await make_user("paid")
        gone_buyer = await make_user("gone")
        paid = await settlement.settle_purchase(paid_buyer, prompt_id, "orynth")
        gone = await settlement.settle_purchase(gone_buyer, prompt_id, "orynth")

        completed = await service.process_webhook_event(
            {"type": "payment.completed", "data": {"id": "orynth_sess_1", "txId": "0xabc"}}
        )
        expired = await service.process_webhook_event(
            {"type": "payment.expired", "data": {"id": "orynth_sess_2"}}
        )
        ignored = await service.process_webhook_event({"type": "payment.completed", "data": {}})

        assert completed["seller_revenue"] == 800
        assert expired["failed"] is True
        assert ignored["ignored"] is True

        paid_purchase = await db_session.get(Purchase, paid.purchase_id, populate_existing=True)
        gone_purchase = await db_session.get(Purchase, gone.purchase_id, populate_existing=True)
        assert paid_purchase.status == PurchaseStatus.COMPLETED
        assert paid_purchase.processor_payment_id == "0xabc"
        assert gone_purchase.status == PurchaseStatus.FAILED
