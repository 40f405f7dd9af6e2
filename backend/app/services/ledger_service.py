"""Ledger service: the only writer of ``User.credits`` and wallet balances.

This service provides:
- Conditional credit debits/credits with matching CreditHistory rows
- Seller wallet revenue (pending balance) with matching wallet Transactions
- Capped clawbacks used by refunds
- Bonus grants and credit balance/history reads

Mutation helpers never commit. They are composed by the settlement, refund
and payout services inside one transaction that commits once or rolls back.
"""

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InsufficientFundsError, InvalidInputError, LedgerError, NotFoundError
from app.models.credit_history import CreditHistory, CreditHistoryType
from app.models.transaction import Transaction, TransactionType
from app.models.user import User
from app.models.wallet import Wallet

logger = logging.getLogger(__name__)

DAILY_BONUS_CREDITS = 500
CREDIT_HISTORY_PAGE = 20


class LedgerService:
    """Service for ledger-recorded balance mutations."""

    def __init__(self, db: AsyncSession):
        """Initialize the ledger service.

        Args:
            db: Database session shared with the calling service
        """
        self.db = db

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    async def lock_users(self, *user_ids: int) -> None:
        """Row-lock users in id order.

        Every transaction touching two users' credits takes both locks this
        way first, so a buyer and seller trading in opposite directions
        queue up instead of deadlocking. ``FOR NO KEY UPDATE`` is the lock
        an ``UPDATE users SET credits`` takes anyway, and it does not block
        foreign-key checks from new purchase or history rows.
        """
        await self.db.execute(
            select(User.id)
            .where(User.id.in_(sorted(set(user_ids))))
            .order_by(User.id)
            .with_for_update(key_share=True)
        )

    async def get_credits(self, user_id: int) -> int:
        """Current credits balance, read straight from the store.

        Raises:
            NotFoundError: If the user does not exist
        """
        credits = await self.db.scalar(select(User.credits).where(User.id == user_id))
        if credits is None:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        return credits

    async def debit_credits(
        self,
        user_id: int,
        amount: int,
        entry_type: CreditHistoryType,
        description: str,
        purchase_id: Optional[int] = None,
    ) -> None:
        """Debit credits only if the balance covers it, and record the entry.

        The balance check and the decrement are one conditional UPDATE, so
        concurrent debits can never take the balance below zero.

        Raises:
            InsufficientFundsError: If the balance is lower than ``amount``
        """
        if amount <= 0:
            raise InvalidInputError("Debit amount must be positive", {"amount": amount})

        result = await self.db.execute(
            update(User)
            .where(User.id == user_id, User.credits >= amount)
            .values(credits=User.credits - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = await self.get_credits(user_id)
            raise InsufficientFundsError(required=amount, available=available)

        self.db.add(
            CreditHistory(
                user_id=user_id,
                type=entry_type,
                amount=-amount,
                description=description,
                purchase_id=purchase_id,
            )
        )

    async def credit_credits(
        self,
        user_id: int,
        amount: int,
        entry_type: CreditHistoryType,
        description: str,
        purchase_id: Optional[int] = None,
    ) -> None:
        """Credit a user's balance and record the entry.

        Raises:
            NotFoundError: If the user does not exist
        """
        if amount <= 0:
            raise InvalidInputError("Credit amount must be positive", {"amount": amount})

        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits=User.credits + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})

        self.db.add(
            CreditHistory(
                user_id=user_id,
                type=entry_type,
                amount=amount,
                description=description,
                purchase_id=purchase_id,
            )
        )

    def record_credit_audit(
        self,
        user_id: int,
        entry_type: CreditHistoryType,
        description: str,
        purchase_id: Optional[int] = None,
    ) -> None:
        """Append a zero-amount history row (payment happened off-ledger)."""
        self.db.add(
            CreditHistory(
                user_id=user_id,
                type=entry_type,
                amount=0,
                description=description,
                purchase_id=purchase_id,
            )
        )

    async def claw_back_credits(
        self,
        user_id: int,
        amount: int,
        description: str,
        purchase_id: Optional[int] = None,
    ) -> int:
        """Take back up to ``amount`` credits without going negative.

        Returns:
            The amount actually clawed back
        """
        if amount <= 0:
            return 0

        available = await self.db.scalar(
            select(User.credits).where(User.id == user_id).with_for_update()
        )
        clawed = min(amount, available or 0)
        if clawed > 0:
            await self.debit_credits(
                user_id, clawed, CreditHistoryType.REFUND, description, purchase_id
            )
        return clawed

    # ------------------------------------------------------------------
    # Seller wallet
    # ------------------------------------------------------------------

    async def get_wallet(self, user_id: int, lock: bool = False) -> Optional[Wallet]:
        query = select(Wallet).where(Wallet.user_id == user_id)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_or_create_wallet(self, user_id: int) -> Wallet:
        """Locked wallet row for a seller, created empty on first use.

        Concurrent first sales for the same seller race on the insert; the
        loser's insert is a no-op and both lock the same row afterwards.

        Raises:
            LedgerError: The wallet could not be created
        """
        wallet = await self.get_wallet(user_id, lock=True)
        if wallet is not None:
            return wallet

        dialect = self.db.get_bind().dialect.name
        insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
        result = await self.db.execute(
            insert(Wallet)
            .values(
                user_id=user_id,
                balance=0,
                pending_balance=0,
                total_earned=0,
                total_withdrawn=0,
            )
            .on_conflict_do_nothing(index_elements=[Wallet.user_id])
        )
        if result.rowcount:
            logger.info(f"Created wallet for seller {user_id}")

        wallet = await self.get_wallet(user_id, lock=True)
        if wallet is None:
            raise LedgerError("Seller wallet could not be created", {"user_id": user_id})
        return wallet

    async def add_pending_revenue(
        self,
        seller_id: int,
        amount: int,
        description: str,
        purchase_id: int,
    ) -> Wallet:
        """Hold a seller's revenue share in ``pending_balance``."""
        wallet = await self.get_or_create_wallet(seller_id)
        wallet.pending_balance += amount
        self.db.add(
            Transaction(
                wallet_id=wallet.id,
                type=TransactionType.PURCHASE_REVENUE,
                amount=amount,
                description=description,
                purchase_id=purchase_id,
            )
        )
        return wallet

    async def claw_back_revenue(
        self,
        seller_id: int,
        amount: int,
        description: str,
        purchase_id: int,
    ) -> int:
        """Remove refunded revenue from a wallet, pending balance first.

        Never drives either balance negative.

        Returns:
            The amount actually removed from the wallet
        """
        wallet = await self.get_wallet(seller_id, lock=True)
        if wallet is None or amount <= 0:
            return 0

        from_pending = min(amount, wallet.pending_balance)
        from_balance = min(amount - from_pending, wallet.balance)
        clawed = from_pending + from_balance
        if clawed == 0:
            return 0

        wallet.pending_balance -= from_pending
        wallet.balance -= from_balance
        if from_balance:
            # Already released revenue was counted as earned
            wallet.total_earned = max(0, wallet.total_earned - from_balance)

        self.db.add(
            Transaction(
                wallet_id=wallet.id,
                type=TransactionType.REFUND,
                amount=-clawed,
                description=description,
                purchase_id=purchase_id,
            )
        )
        return clawed

    # ------------------------------------------------------------------
    # Bonus and reads
    # ------------------------------------------------------------------

    async def grant_bonus(
        self,
        user_id: int,
        amount: int = DAILY_BONUS_CREDITS,
        description: str = "Daily bonus",
    ) -> int:
        """Grant bonus credits.

        Args:
            user_id: The user's ID
            amount: Credits to grant (must be positive)
            description: Shown in the credit history

        Returns:
            New credits balance

        Raises:
            InvalidInputError: If amount is not positive
            LedgerError: If the ledger write fails
        """
        try:
            await self.credit_credits(user_id, amount, CreditHistoryType.BONUS, description)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Bonus grant failed for user {user_id} (amount={amount}): {e}")
            raise LedgerError("Failed to grant bonus credits", {"user_id": user_id})
        except Exception:
            await self.db.rollback()
            raise

        balance = await self.get_credits(user_id)
        logger.info(f"Granted {amount} bonus credits to user {user_id}. New balance: {balance}")
        return balance

    async def get_credit_summary(self, user_id: int) -> dict:
        """Credits balance and the latest history rows.

        Returns:
            Dict with credits and history
        """
        credits = await self.get_credits(user_id)
        result = await self.db.execute(
            select(CreditHistory)
            .where(CreditHistory.user_id == user_id)
            .order_by(CreditHistory.created_at.desc(), CreditHistory.id.desc())
            .limit(CREDIT_HISTORY_PAGE)
        )
        return {"credits": credits, "history": list(result.scalars().all())}

    async def sum_credit_history(self, user_id: int) -> int:
        """Sum of every CreditHistory amount; equals the balance when consistent."""
        total = await self.db.scalar(
            select(func.coalesce(func.sum(CreditHistory.amount), 0)).where(
                CreditHistory.user_id == user_id
            )
        )
        return int(total or 0)

    async def sum_wallet_transactions(self, wallet_id: int) -> int:
        total = await self.db.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.wallet_id == wallet_id
            )
        )
        return int(total or 0)


def get_ledger_service(db: AsyncSession) -> LedgerService:
    """Factory function to create LedgerService.

    Args:
        db: Database session

    Returns:
        Configured LedgerService instance
    """
    return LedgerService(db)
