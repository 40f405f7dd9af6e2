"""Tests for the result log service."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenError, MetricRejectedError, PromptNotFoundError
from app.models.result_log import MetricType
from app.services.metric_validation import AnomalyDetector
from app.services.notification_service import NullNotifier
from app.services.result_log_service import ResultLogService
from app.services.settlement_service import SettlementService


@pytest.fixture
def service(db_session: AsyncSession, notifier) -> ResultLogService:
    return ResultLogService(db_session, notifier=notifier)


@pytest.fixture
def prompt_with_buyer(db_session: AsyncSession, make_user, make_prompt):
    """Paid prompt with one completed buyer: (prompt_id, owner_id, buyer_id)."""

    async def _make(price: int = 500):
        owner_id = await make_user("owner")
        buyer_id = await make_user("buyer", credits=1000)
        prompt_id = await make_prompt(owner_id, price=price)
        settlement = SettlementService(db_session, gateways={}, notifier=NullNotifier())
        await settlement.settle_purchase(buyer_id, prompt_id)
        return prompt_id, owner_id, buyer_id

    return _make


class TestCreateResultLog:
    async def test_buyer_logs_result(self, service, prompt_with_buyer, notifier):
        prompt_id, owner_id, buyer_id = await prompt_with_buyer()

        outcome = await service.create_result_log(
            buyer_id, prompt_id, MetricType.TIME_SAVED, 45, "min", note="Weekly report"
        )

        assert outcome.flagged is False
        assert outcome.message is None
        assert outcome.result_log.id is not None
        assert outcome.result_log.is_flagged is False

        sent = notifier.for_user(owner_id)
        assert len(sent) == 1
        assert sent[0]["metadata"]["metric_type"] == "time_saved"
        assert "@buyer" in sent[0]["message"]

    async def test_owner_is_not_notified_of_own_log(self, service, prompt_with_buyer, notifier):
        prompt_id, owner_id, _ = await prompt_with_buyer()

        await service.create_result_log(owner_id, prompt_id, MetricType.QUALITY, 20, "%")

        assert notifier.for_user(owner_id) == []

    async def test_free_prompt_open_to_everyone(self, service, make_user, make_prompt):
        owner_id = await make_user("owner")
        visitor_id = await make_user("visitor")
        prompt_id = await make_prompt(owner_id, price=0)

        outcome = await service.create_result_log(
            visitor_id, prompt_id, MetricType.TIME_SAVED, 10, "min"
        )

        assert outcome.result_log.user_id == visitor_id

    async def test_non_buyer_is_forbidden(self, service, prompt_with_buyer, make_user):
        prompt_id, _, _ = await prompt_with_buyer()
        stranger_id = await make_user("stranger")

        with pytest.raises(ForbiddenError):
            await service.create_result_log(
                stranger_id, prompt_id, MetricType.TIME_SAVED, 45, "min"
            )

    async def test_missing_prompt(self, service, make_user):
        user_id = await make_user()

        with pytest.raises(PromptNotFoundError):
            await service.create_result_log(user_id, 9999, MetricType.TIME_SAVED, 45, "min")

    async def test_out_of_bounds_value_rejected(self, service, prompt_with_buyer):
        prompt_id, _, buyer_id = await prompt_with_buyer()

        with pytest.raises(MetricRejectedError) as exc_info:
            await service.create_result_log(buyer_id, prompt_id, MetricType.REVENUE, 50, "JPY")

        assert exc_info.value.details["metric_type"] == "revenue"
        logs, _ = await service.list_result_logs(prompt_id, include_flagged=True)
        assert logs == []

    async def test_unit_mismatch_is_stored_flagged(self, service, prompt_with_buyer):
        prompt_id, _, buyer_id = await prompt_with_buyer()

        outcome = await service.create_result_log(
            buyer_id, prompt_id, MetricType.TIME_SAVED, 2, "hours"
        )

        assert outcome.flagged is True
        assert outcome.result_log.flag_reason == 'The recommended unit is "min"'


class TestAnomalyFlagging:
    async def test_outlier_against_history_is_flagged(
        self, db_session, notifier, prompt_with_buyer
    ):
        service = ResultLogService(
            db_session, notifier=notifier, detector=AnomalyDetector(min_samples=3)
        )
        prompt_id, owner_id, buyer_id = await prompt_with_buyer()
        for value in (30, 32, 28, 31):
            await service.create_result_log(owner_id, prompt_id, MetricType.TIME_SAVED, value, "min")

        outcome = await service.create_result_log(
            buyer_id, prompt_id, MetricType.TIME_SAVED, 300, "min"
        )

        assert outcome.flagged is True
        assert "far outside the usual range" in outcome.message


class TestListResultLogs:
    async def test_summary_excludes_flagged(self, service, prompt_with_buyer):
        prompt_id, owner_id, buyer_id = await prompt_with_buyer()
        await service.create_result_log(owner_id, prompt_id, MetricType.TIME_SAVED, 30, "min")
        await service.create_result_log(buyer_id, prompt_id, MetricType.TIME_SAVED, 45, "min")
        await service.create_result_log(buyer_id, prompt_id, MetricType.QUALITY, 95, "%")

        logs, summary = await service.list_result_logs(prompt_id)
        all_logs, _ = await service.list_result_logs(prompt_id, include_flagged=True)

        assert len(logs) == 2
        assert len(all_logs) == 3
        assert summary == {"time_saved": {"count": 2, "total": 75.0, "average": 37.5}}

    async def test_limit(self, service, prompt_with_buyer):
        prompt_id, owner_id, _ = await prompt_with_buyer()
        for value in (10, 20, 30):
            await service.create_result_log(owner_id, prompt_id, MetricType.TIME_SAVED, value, "min")

        logs, summary = await service.list_result_logs(prompt_id, limit=2)

        assert len(logs) == 2
        assert summary["time_saved"]["count"] == 3
