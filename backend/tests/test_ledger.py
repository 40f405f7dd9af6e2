"""Unit tests for the ledger service.

Tests cover:
- Conditional debits and credits with history rows
- Ordered user row locks
- Capped clawbacks
- Wallet pending revenue and clawback order
- Bonus grants and credit summary
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InsufficientFundsError, InvalidInputError, NotFoundError
from app.models import CreditHistory, Transaction, TransactionType
from app.models.credit_history import CreditHistoryType
from app.services.ledger_service import (
    CREDIT_HISTORY_PAGE,
    DAILY_BONUS_CREDITS,
    LedgerService,
    get_ledger_service,
)


@pytest.fixture
def ledger(db_session: AsyncSession) -> LedgerService:
    return get_ledger_service(db_session)


# ============================================================================
# Credits
# ============================================================================


class TestCredits:
    async def test_get_credits_unknown_user(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.get_credits(9999)

    async def test_debit_records_negative_entry(self, ledger, make_user, db_session):
        user_id = await make_user(credits=1000)

        await ledger.debit_credits(user_id, 300, CreditHistoryType.PURCHASE, "Test debit")
        await db_session.commit()

        assert await ledger.get_credits(user_id) == 700
        result = await db_session.execute(
            select(CreditHistory.amount).where(
                CreditHistory.user_id == user_id,
                CreditHistory.type == CreditHistoryType.PURCHASE,
            )
        )
        assert result.scalars().all() == [-300]

    async def test_lock_users_locks_in_id_order(self, ledger):
        with patch.object(ledger.db, "execute", AsyncMock()) as execute:
            await ledger.lock_users(9, 3, 9)

        statement = execute.await_args.args[0]
        sql = str(
            statement.compile(
                dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}
            )
        )
        assert "IN (3, 9)" in sql
        assert "ORDER BY users.id" in sql
        assert sql.endswith("FOR NO KEY UPDATE")

    async def test_lock_users_runs_on_sqlite(self, ledger, make_user):
        first = await make_user()
        second = await make_user()

        await ledger.lock_users(second, first)

        assert await ledger.get_credits(first) == 0

    async def test_debit_rejects_overdraft(self, ledger, make_user):
        user_id = await make_user(credits=300)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.debit_credits(user_id, 500, CreditHistoryType.PURCHASE, "Too much")

        assert exc_info.value.shortfall == 200
        assert exc_info.value.to_dict()["available"] == 300
        assert await ledger.get_credits(user_id) == 300

    async def test_non_positive_amounts_rejected(self, ledger, make_user):
        user_id = await make_user(credits=100)

        with pytest.raises(InvalidInputError):
            await ledger.debit_credits(user_id, 0, CreditHistoryType.PURCHASE, "zero")
        with pytest.raises(InvalidInputError):
            await ledger.credit_credits(user_id, -5, CreditHistoryType.SALE, "negative")

    async def test_claw_back_is_capped(self, ledger, make_user, db_session):
        user_id = await make_user(credits=150)

        clawed = await ledger.claw_back_credits(user_id, 400, "Refund clawback")
        await db_session.commit()

        assert clawed == 150
        assert await ledger.get_credits(user_id) == 0
        assert await ledger.sum_credit_history(user_id) == 0

    async def test_claw_back_from_empty_balance(self, ledger, make_user):
        user_id = await make_user(credits=0)

        assert await ledger.claw_back_credits(user_id, 400, "Refund clawback") == 0


# ============================================================================
# Wallet
# ============================================================================


class TestWallet:
    async def test_pending_revenue_creates_wallet(self, ledger, make_user, db_session):
        seller_id = await make_user()

        wallet = await ledger.add_pending_revenue(seller_id, 400, "Sale", purchase_id=None)
        await db_session.commit()
        wallet_id = wallet.id

        wallet = await ledger.get_wallet(seller_id)
        assert wallet.pending_balance == 400
        assert wallet.balance == 0
        assert await ledger.sum_wallet_transactions(wallet_id) == 400

    async def test_claw_back_revenue_takes_pending_first(self, ledger, make_user, db_session):
        seller_id = await make_user()
        wallet = await ledger.get_or_create_wallet(seller_id)
        wallet.balance = 1000
        wallet.pending_balance = 300
        wallet.total_earned = 1000
        db_session.add(
            Transaction(wallet_id=wallet.id, type=TransactionType.PURCHASE_REVENUE, amount=1300)
        )
        await db_session.commit()
        wallet_id = wallet.id

        clawed = await ledger.claw_back_revenue(seller_id, 400, "Refund", purchase_id=None)
        await db_session.commit()

        wallet = await ledger.get_wallet(seller_id)
        assert clawed == 400
        assert wallet.pending_balance == 0
        assert wallet.balance == 900
        assert wallet.total_earned == 900
        assert await ledger.sum_wallet_transactions(wallet_id) == 900

    async def test_claw_back_revenue_without_wallet(self, ledger, make_user):
        seller_id = await make_user()

        assert await ledger.claw_back_revenue(seller_id, 400, "Refund", purchase_id=None) == 0


# ============================================================================
# Bonus and summary
# ============================================================================


class TestBonus:
    async def test_grant_bonus(self, ledger, make_user):
        user_id = await make_user(credits=100)

        balance = await ledger.grant_bonus(user_id)

        assert balance == 100 + DAILY_BONUS_CREDITS
        assert await ledger.sum_credit_history(user_id) == balance

    async def test_credit_summary_limits_history(self, ledger, make_user):
        user_id = await make_user()
        for _ in range(CREDIT_HISTORY_PAGE + 5):
            await ledger.grant_bonus(user_id, 10, "Streak bonus")

        summary = await ledger.get_credit_summary(user_id)

        assert summary["credits"] == 10 * (CREDIT_HISTORY_PAGE + 5)
        assert len(summary["history"]) == CREDIT_HISTORY_PAGE
