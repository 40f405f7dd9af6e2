"""ARQ worker tasks.

Tasks include:
- deliver_notification: Stores a notification enqueued by the API
- reconcile_pending_purchases: Settles or fails stale pending purchases
- release_pending_revenue: Moves seller revenue out of the refund window

Usage:
    Start worker with: arq app.workers.arq_tasks.WorkerSettings
"""

import logging

from arq import cron

from app.core.arq_config import get_redis_settings
from app.core.config import settings
from app.core.database import close_db, get_session_factory
from app.models.notification import NotificationType
from app.services.notification_service import NotificationService, NullNotifier
from app.services.settlement_service import SettlementService, get_payment_gateways

logger = logging.getLogger(__name__)


async def deliver_notification(ctx: dict, payload: dict) -> dict:
    """Store a notification in the recipient's inbox.

    Delivery is at-most-once: the job is not retried.

    Args:
        ctx: ARQ context
        payload: user_id, type, title, message, link, metadata

    Returns:
        Dict with the stored notification id
    """
    session_factory = get_session_factory()

    async with session_factory() as db:
        service = NotificationService(db)
        notification = await service.create_notification(
            user_id=payload["user_id"],
            notification_type=NotificationType(payload["type"]),
            title=payload["title"],
            message=payload["message"],
            link=payload.get("link"),
            metadata=payload.get("metadata"),
        )
        return {"status": "delivered", "notification_id": notification.id}


def _sweep_service(db) -> SettlementService:
    # Sweeps run unattended; buyers were already told about the purchase
    return SettlementService(db, gateways=get_payment_gateways(), notifier=NullNotifier())


async def reconcile_pending_purchases(ctx: dict) -> dict:
    """Confirm or fail pending purchases whose webhook never arrived.

    Args:
        ctx: ARQ context

    Returns:
        Dict with sweep counters
    """
    session_factory = get_session_factory()

    async with session_factory() as db:
        result = await _sweep_service(db).reconcile_pending_purchases()

    logger.info(f"Reconciliation completed: {result}")
    return {"status": "completed", **result}


async def release_pending_revenue(ctx: dict) -> dict:
    """Release seller revenue for purchases past the refund window."""
    session_factory = get_session_factory()

    async with session_factory() as db:
        result = await _sweep_service(db).release_pending_revenue()

    logger.info(f"Revenue release completed: {result}")
    return {"status": "completed", **result}


# Worker settings for ARQ
class WorkerSettings:
    """ARQ Worker configuration.

    Usage: arq app.workers.arq_tasks.WorkerSettings
    """

    redis_settings = get_redis_settings()
    queue_name = settings.ARQ_QUEUE_NAME

    # Worker behavior
    max_jobs = 10
    job_timeout = 300  # 5 minutes
    max_tries = 1  # Notifications are best-effort; sweeps run again on schedule
    poll_delay = 0.5

    # Health check
    health_check_interval = 30

    # Registered task functions
    functions = [
        deliver_notification,
        reconcile_pending_purchases,
        release_pending_revenue,
    ]

    # Reconcile every 15 minutes, release revenue hourly
    cron_jobs = [
        cron(reconcile_pending_purchases, minute={0, 15, 30, 45}),
        cron(release_pending_revenue, minute=5),
    ]

    # Startup hook
    @staticmethod
    async def on_startup(ctx: dict) -> None:
        """Called when worker starts."""
        logger.info("ARQ Worker starting up...")
        get_session_factory()
        logger.info("ARQ Worker ready to process jobs")

    # Shutdown hook
    @staticmethod
    async def on_shutdown(ctx: dict) -> None:
        """Called when worker shuts down."""
        logger.info("ARQ Worker shutting down...")
        await close_db()
        logger.info("ARQ Worker shutdown complete")
