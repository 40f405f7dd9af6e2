"""Notification sink for settlement, refund, payout and result-log events.

Notifications are dispatched after the ledger commit as ARQ jobs. Delivery is
at-most-once and best-effort: a failure to enqueue is logged and swallowed,
never propagated into the operation that triggered it.
"""

import logging
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import Notification, NotificationType
from app.utils.money import seller_share

logger = logging.getLogger(__name__)

DELIVER_NOTIFICATION_TASK = "deliver_notification"


class Notifier:
    """Base notification sink.

    Subclasses implement ``dispatch``; the event helpers below build the
    messages and guarantee that no exception escapes.
    """

    async def dispatch(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError

    async def notify(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Dispatch one notification, swallowing any failure.

        Returns:
            True if the notification was handed off, False otherwise
        """
        try:
            await self.dispatch(user_id, notification_type, title, message, link, metadata)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to dispatch {notification_type.value} notification "
                f"for user {user_id}: {e}"
            )
            return False

    async def purchase_completed(
        self,
        buyer_id: int,
        seller_id: int,
        prompt_id: int,
        prompt_title: str,
        price: int,
    ) -> None:
        """Tell the buyer about the purchase and the seller about the sale."""
        await self.notify(
            buyer_id,
            NotificationType.PURCHASE,
            "Purchase complete",
            f'You purchased "{prompt_title}".',
            link=f"/prompts/{prompt_id}",
            metadata={"prompt_id": prompt_id, "price": price},
        )
        seller_amount = seller_share(price)
        await self.notify(
            seller_id,
            NotificationType.SALE,
            "Your prompt sold!",
            f'"{prompt_title}" was purchased. +{seller_amount} credits',
            link=f"/prompts/{prompt_id}",
            metadata={"prompt_id": prompt_id, "price": price, "amount": seller_amount},
        )

    async def purchase_refunded(
        self,
        buyer_id: int,
        seller_id: int,
        prompt_id: int,
        prompt_title: str,
        refunded_amount: int,
        clawed_back: int,
    ) -> None:
        await self.notify(
            buyer_id,
            NotificationType.REFUND,
            "Refund processed",
            f'Your purchase of "{prompt_title}" was refunded ({refunded_amount} JPY).',
            link=f"/prompts/{prompt_id}",
            metadata={"prompt_id": prompt_id, "amount": refunded_amount},
        )
        await self.notify(
            seller_id,
            NotificationType.REFUND,
            "A purchase was refunded",
            f'A purchase of "{prompt_title}" was refunded. -{clawed_back} credits',
            link=f"/prompts/{prompt_id}",
            metadata={"prompt_id": prompt_id, "amount": clawed_back},
        )

    async def result_logged(
        self,
        owner_id: int,
        logger_username: str,
        prompt_id: int,
        prompt_title: str,
        metric_type: str,
        metric_value: float,
        metric_unit: str,
    ) -> None:
        await self.notify(
            owner_id,
            NotificationType.RESULT_LOG,
            "New result reported",
            f'@{logger_username} reported {metric_value:g}{metric_unit} '
            f'({metric_type}) for "{prompt_title}".',
            link=f"/prompts/{prompt_id}",
            metadata={
                "prompt_id": prompt_id,
                "metric_type": metric_type,
                "metric_value": metric_value,
            },
        )

    async def payout_status_changed(
        self,
        seller_id: int,
        payout_id: int,
        status: str,
        net_amount: int,
    ) -> None:
        await self.notify(
            seller_id,
            NotificationType.PAYOUT,
            f"Payout {status}",
            f"Your payout request #{payout_id} ({net_amount:,} JPY) is now {status}.",
            link="/wallet",
            metadata={"payout_id": payout_id, "status": status, "net_amount": net_amount},
        )


class NullNotifier(Notifier):
    """Discards every notification."""

    async def dispatch(self, user_id, notification_type, title, message, link=None, metadata=None):
        logger.debug(f"Dropping {notification_type.value} notification for user {user_id}")


class ArqNotifier(Notifier):
    """Enqueues a ``deliver_notification`` job per notification."""

    async def dispatch(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        from app.core.arq_config import enqueue_job

        await enqueue_job(
            DELIVER_NOTIFICATION_TASK,
            {
                "user_id": user_id,
                "type": notification_type.value,
                "title": title,
                "message": message,
                "link": link,
                "metadata": metadata,
            },
        )


class NotificationService:
    """Persists and reads the notification inbox."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_notification(
        self,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Notification:
        """Store a notification row.

        Args:
            user_id: Recipient
            notification_type: Event kind
            title: Short headline
            message: Body text
            link: Optional in-app link
            metadata: Optional structured context

        Returns:
            The stored Notification
        """
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            link=link,
            notification_metadata=metadata,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)

        logger.info(f"Stored {notification_type.value} notification for user {user_id}")
        return notification

    async def list_notifications(
        self,
        user_id: int,
        limit: int = 20,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        """Latest notifications for a user and the unread count."""
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await self.db.execute(
            query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        )
        notifications = list(result.scalars().all())

        unread = await self.db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return notifications, unread or 0

    async def mark_all_read(self, user_id: int) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        await self.db.commit()
        return result.rowcount or 0


_default_notifier: Notifier = ArqNotifier()


def get_notifier() -> Notifier:
    """Process-wide notifier used by the API layer."""
    return _default_notifier


def get_notification_service(db: AsyncSession) -> NotificationService:
    """Factory function to create NotificationService.

    Args:
        db: Database session

    Returns:
        Configured NotificationService instance
    """
    return NotificationService(db)
