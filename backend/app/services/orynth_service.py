"""Orynth (USDC) payment integration.

Implements the deferred stablecoin rail:
1. Create a payment request priced in USDC for a pending purchase
2. Redirect the buyer to Orynth to approve the transfer
3. Settle on the signed ``payment.completed`` webhook

Webhook bodies are signed with HMAC-SHA256 over the raw body using the
shared ``ORYNTH_WEBHOOK_SECRET``; the hex digest arrives in the
``X-Orynth-Signature`` header.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Optional

import httpx
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
from app.services.stripe_service import WebhookVerificationError
from app.utils.money import jpy_to_usdc

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Orynth-Signature"


class OrynthGateway(PaymentGateway):
    """USDC payments through Orynth payment requests."""

    provider = PaymentProvider.ORYNTH

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        project_id: Optional[str] = None,
        platform_wallet_id: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout or settings.PROCESSOR_TIMEOUT_SECONDS)
        self.base_url = (base_url or settings.ORYNTH_API_BASE_URL).rstrip("/")
        self.api_key = api_key or settings.ORYNTH_API_KEY
        self.project_id = project_id or settings.ORYNTH_PROJECT_ID
        self.platform_wallet_id = platform_wallet_id or settings.ORYNTH_PLATFORM_WALLET_ID
        self.webhook_secret = webhook_secret or settings.ORYNTH_WEBHOOK_SECRET
        self._transport = transport

    async def _request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send one authenticated request and return the JSON body.

        Raises:
            ProcessorError: On network errors, timeouts or non-2xx responses
        """
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "X-Project-Id": self.project_id,
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await self._bounded(
                    operation, client.request(method, endpoint, json=body)
                )
            except httpx.RequestError as e:
                logger.error(f"Network error during Orynth {operation}: {e}")
                raise ProcessorError(
                    "Could not reach the USDC payment processor",
                    {"provider": self.provider.value, "operation": operation},
                )

        if response.status_code >= 400:
            logger.error(
                f"Orynth API error ({response.status_code}) during {operation}: "
                f"{response.text[:500]}"
            )
            raise ProcessorError(
                f"USDC payment failed with status {response.status_code}",
                {"provider": self.provider.value, "operation": operation},
            )

        return response.json()

    async def create_checkout(
        self,
        request: CheckoutRequest,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a USDC payment request for one prompt purchase.

        Args:
            request: Purchase being paid for
            success_url: URL to return to after approval
            cancel_url: URL to return to on cancel

        Returns:
            CheckoutSession with the payment request id and approval URL

        Raises:
            ProcessorError: If the request could not be created
        """
        amount_usdc = jpy_to_usdc(request.price)
        logger.info(
            f"Creating Orynth payment request for purchase {request.purchase_id} "
            f"({request.price} JPY = {amount_usdc} USDC)"
        )

        data = await self._request(
            "create_checkout",
            "POST",
            "/payment-requests",
            {
                "amount": str(amount_usdc),
                "currency": "USDC",
                "recipientWalletId": self.platform_wallet_id,
                "memo": f"Prompt purchase: {request.prompt_id}",
                "metadata": request.metadata,
                "successUrl": success_url,
                "cancelUrl": cancel_url,
            },
        )

        request_id = data.get("id")
        payment_url = data.get("paymentUrl")
        if not request_id or not payment_url:
            raise ProcessorError(
                "USDC payment processor returned an incomplete response",
                {"provider": self.provider.value, "operation": "create_checkout"},
            )
        return CheckoutSession(
            session_id=request_id,
            redirect_url=payment_url,
            expires_at=data.get("expiresAt"),
        )

    async def get_session_status(self, session_id: str) -> SessionStatus:
        data = await self._request(
            "retrieve_checkout", "GET", f"/payment-requests/{session_id}"
        )
        status = data.get("status")
        return SessionStatus(
            session_id=session_id,
            paid=status == "completed",
            open=status == "pending",
            payment_id=data.get("txId"),
            metadata=data.get("metadata") or {},
        )

    async def refund_payment(self, payment_id: str, amount: int) -> Optional[str]:
        data = await self._request(
            "refund",
            "POST",
            f"/payments/{payment_id}/refunds",
            {"amount": str(jpy_to_usdc(amount)), "currency": "USDC"},
        )
        return data.get("id")

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify the HMAC signature of an Orynth webhook and parse it.

        Raises:
            WebhookVerificationError: If the secret is missing, the signature
                does not match, or the body is not JSON
        """
        if not self.webhook_secret:
            raise WebhookVerificationError("ORYNTH_WEBHOOK_SECRET not configured")
        if not signature:
            raise WebhookVerificationError("Missing webhook signature")

        expected = hmac.new(
            self.webhook_secret.encode("utf-8"), payload, hashlib.sha256
        ).hexdigest()
        if not hmac.compare_digest(expected, signature.strip()):
            logger.error("Invalid Orynth webhook signature")
            raise WebhookVerificationError("Invalid webhook signature")

        try:
            event = json.loads(payload)
        except ValueError:
            logger.error("Invalid Orynth webhook payload")
            raise WebhookVerificationError("Invalid webhook payload")

        logger.info(f"Orynth webhook verified: {event.get('type')}")
        return event


def sign_orynth_payload(payload: bytes, secret: str) -> str:
    """Signature Orynth sends for ``payload``."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class OrynthService:
    """Routes verified Orynth webhook events into the settlement engine."""

    def __init__(self, db: AsyncSession, settlement_service=None, notifier=None):
        from app.services.settlement_service import SettlementService

        self.db = db
        self.settlement = settlement_service or SettlementService(db, notifier=notifier)

    async def process_webhook_event(self, event: dict) -> dict:
        event_type = event.get("type")
        data = event.get("data") or {}
        request_id = data.get("id")

        logger.info(f"Processing Orynth webhook event: {event_type} ({request_id})")

        if not request_id:
            logger.warning(f"Orynth event {event_type} has no payment request id")
            return {"success": True, "event_type": event_type, "ignored": True}

        if event_type == "payment.completed":
            return await self.settlement.confirm_settlement(
                PaymentProvider.ORYNTH,
                request_id,
                payment_id=data.get("txId"),
                metadata=data.get("metadata") or {},
            )
        elif event_type in ("payment.failed", "payment.expired"):
            return await self.settlement.fail_settlement(
                PaymentProvider.ORYNTH,
                correlation_id=request_id,
                reason=event_type,
            )

        logger.info(f"Ignoring unhandled Orynth event type: {event_type}")
        return {"success": True, "event_type": event_type, "ignored": True}


def get_orynth_gateway() -> Optional[OrynthGateway]:
    """Orynth gateway, or None when the USDC rail is not configured."""
    if not (settings.ORYNTH_API_KEY and settings.ORYNTH_PROJECT_ID):
        return None
    return OrynthGateway()


def get_orynth_service(db: AsyncSession, notifier=None) -> OrynthService:
    return OrynthService(db, notifier=notifier)
