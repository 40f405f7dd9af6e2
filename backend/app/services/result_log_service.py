"""Result log service: stores self-reported outcomes and summarises them."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    ForbiddenError,
    LedgerError,
    MetricRejectedError,
    PromptNotFoundError,
)
from app.models.prompt import Prompt
from app.models.purchase import Purchase, PurchaseStatus
from app.models.result_log import MetricType, ResultLog
from app.models.user import User
from app.services.metric_validation import AnomalyDetector, validate_metric
from app.services.notification_service import Notifier, get_notifier

logger = logging.getLogger(__name__)


@dataclass
class ResultLogOutcome:
    result_log: ResultLog
    flagged: bool
    message: Optional[str] = None


class ResultLogService:
    """Service for prompt result logs."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        detector: Optional[AnomalyDetector] = None,
    ):
        self.db = db
        self.notifier = notifier or get_notifier()
        self.detector = detector or AnomalyDetector()

    async def create_result_log(
        self,
        user_id: int,
        prompt_id: int,
        metric_type: MetricType,
        metric_value: float,
        metric_unit: str,
        note: Optional[str] = None,
    ) -> ResultLogOutcome:
        """Record an outcome for a prompt.

        The owner, a buyer with a completed purchase, or anyone for a free
        prompt may log. Flagged values are stored but left out of summaries.

        Raises:
            PromptNotFoundError: Prompt does not exist
            ForbiddenError: Caller has not purchased the prompt
            MetricRejectedError: Value outside the hard bounds
        """
        row = (
            await self.db.execute(
                select(Prompt.owner_id, Prompt.title, Prompt.price_jpy).where(Prompt.id == prompt_id)
            )
        ).first()
        if row is None:
            raise PromptNotFoundError(prompt_id)
        owner_id, prompt_title, price = row

        is_owner = owner_id == user_id
        if not is_owner and price > 0 and not await self._has_purchased(user_id, prompt_id):
            raise ForbiddenError(
                "You can report results after purchasing this prompt",
                {"prompt_id": prompt_id},
            )

        validation = validate_metric(metric_type, metric_value, metric_unit)
        if not validation.valid:
            raise MetricRejectedError(
                validation.message,
                {"metric_type": metric_type.value, "metric_value": metric_value},
            )

        history = await self._accepted_values(prompt_id, metric_type)
        anomaly = self.detector.check(history, metric_value)

        flagged = validation.flagged or anomaly.is_anomaly
        reasons = [m for m in (
            validation.message if validation.flagged else None,
            anomaly.message if anomaly.is_anomaly else None,
        ) if m]
        flag_reason = "; ".join(reasons) or None

        result_log = ResultLog(
            user_id=user_id,
            prompt_id=prompt_id,
            metric_type=metric_type,
            metric_value=metric_value,
            metric_unit=metric_unit,
            note=note,
            is_flagged=flagged,
            flag_reason=flag_reason[:500] if flag_reason else None,
        )
        try:
            self.db.add(result_log)
            await self.db.commit()
            await self.db.refresh(result_log)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Storing result log failed: user={user_id}, prompt={prompt_id}: {e}")
            raise LedgerError("Result log could not be stored", {"prompt_id": prompt_id})

        if flagged:
            logger.info(
                f"Result log {result_log.id} flagged: prompt={prompt_id}, "
                f"{metric_type.value}={metric_value}{metric_unit} ({flag_reason})"
            )

        if not is_owner:
            username = await self.db.scalar(select(User.username).where(User.id == user_id))
            try:
                await self.notifier.result_logged(
                    owner_id,
                    username or "someone",
                    prompt_id,
                    prompt_title,
                    metric_type.value,
                    metric_value,
                    metric_unit,
                )
            except Exception as e:
                logger.warning(f"Result log notification for prompt {prompt_id} failed: {e}")

        return ResultLogOutcome(result_log=result_log, flagged=flagged, message=flag_reason)

    async def list_result_logs(
        self,
        prompt_id: int,
        limit: int = 50,
        include_flagged: bool = False,
    ) -> tuple[list[ResultLog], dict[str, dict]]:
        """Result logs for a prompt, newest first, plus a per-type summary.

        The summary always covers non-flagged logs only.
        """
        query = select(ResultLog).where(ResultLog.prompt_id == prompt_id)
        if not include_flagged:
            query = query.where(ResultLog.is_flagged.is_(False))
        result = await self.db.execute(
            query.order_by(ResultLog.created_at.desc(), ResultLog.id.desc()).limit(limit)
        )
        logs = list(result.scalars().all())

        aggregation = await self.db.execute(
            select(
                ResultLog.metric_type,
                func.count(ResultLog.id),
                func.sum(ResultLog.metric_value),
                func.avg(ResultLog.metric_value),
            )
            .where(ResultLog.prompt_id == prompt_id, ResultLog.is_flagged.is_(False))
            .group_by(ResultLog.metric_type)
        )
        summary = {
            metric_type.value: {
                "count": count,
                "total": round(total or 0, 1),
                "average": round(average or 0, 1),
            }
            for metric_type, count, total, average in aggregation.all()
        }
        return logs, summary

    async def _has_purchased(self, user_id: int, prompt_id: int) -> bool:
        purchase_id = await self.db.scalar(
            select(Purchase.id).where(
                Purchase.user_id == user_id,
                Purchase.prompt_id == prompt_id,
                Purchase.status == PurchaseStatus.COMPLETED,
            )
        )
        return purchase_id is not None

    async def _accepted_values(self, prompt_id: int, metric_type: MetricType) -> list[float]:
        result = await self.db.execute(
            select(ResultLog.metric_value)
            .where(
                ResultLog.prompt_id == prompt_id,
                ResultLog.metric_type == metric_type,
                ResultLog.is_flagged.is_(False),
            )
            .order_by(ResultLog.created_at.desc(), ResultLog.id.desc())
            .limit(settings.ANOMALY_HISTORY_LIMIT)
        )
        return list(result.scalars().all())


def get_result_log_service(
    db: AsyncSession,
    notifier: Optional[Notifier] = None,
) -> ResultLogService:
    return ResultLogService(db, notifier=notifier)
