"""Payment processor webhook endpoints.

- POST /api/v1/webhooks/stripe - Stripe events (Stripe-Signature verified)
- POST /api/v1/webhooks/orynth - Orynth events (HMAC-SHA256 verified)

Unknown correlation ids and duplicate deliveries are answered with 200 so
the processor stops retrying; ledger failures answer 500 so it retries.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_notifier
from app.core.exceptions import MarketplaceError
from app.services.notification_service import Notifier
from app.services.orynth_service import SIGNATURE_HEADER, OrynthGateway, get_orynth_service
from app.services.stripe_service import (
    StripeGateway,
    WebhookVerificationError,
    get_stripe_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks", "payments"])


def get_stripe_verifier() -> StripeGateway:
    """Signature verification only needs the webhook secret."""
    return StripeGateway()


def get_orynth_verifier() -> OrynthGateway:
    return OrynthGateway()


def _processing_failed(provider: str, e: Exception) -> HTTPException:
    logger.error(f"{provider} webhook processing error: {e}")
    # 500 makes the processor retry the delivery
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to process webhook",
    )


@router.post(
    "/stripe",
    status_code=status.HTTP_200_OK,
    summary="Stripe webhook handler",
    include_in_schema=False,
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    verifier: StripeGateway = Depends(get_stripe_verifier),
) -> dict:
    """Handle Stripe webhook events.

    This endpoint must be reachable without authentication; security comes
    from the webhook signature.

    Raises:
        HTTPException(400): Missing or invalid signature
        HTTPException(500): Processing failed, Stripe will retry
    """
    payload = await request.body()

    signature = request.headers.get("Stripe-Signature")
    if not signature:
        logger.warning("Webhook request missing Stripe-Signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature",
        )

    try:
        event = verifier.verify_webhook_signature(payload, signature)
    except WebhookVerificationError as e:
        logger.error(f"Webhook verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        )

    try:
        result = await get_stripe_service(db, notifier=notifier).process_webhook_event(event)
    except MarketplaceError as e:
        raise _processing_failed("Stripe", e)

    logger.info(f"Webhook processed successfully: {event['type']} ({event['id']})")
    return {
        "success": True,
        "event_id": event["id"],
        "event_type": event["type"],
        "result": result,
    }


@router.post(
    "/orynth",
    status_code=status.HTTP_200_OK,
    summary="Orynth webhook handler",
    include_in_schema=False,
)
async def orynth_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    verifier: OrynthGateway = Depends(get_orynth_verifier),
) -> dict:
    payload = await request.body()

    try:
        event = verifier.verify_webhook_signature(payload, request.headers.get(SIGNATURE_HEADER))
    except WebhookVerificationError as e:
        logger.error(f"Orynth webhook verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        )

    try:
        result = await get_orynth_service(db, notifier=notifier).process_webhook_event(event)
    except MarketplaceError as e:
        raise _processing_failed("Orynth", e)

    return {"success": True, "event_type": event.get("type"), "result": result}
