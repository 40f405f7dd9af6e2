"""Payout engine for seller wallet withdrawals.

This service provides business logic for:
- Requesting a payout (balance reserved immediately)
- Cancelling a pending payout
- Back-office transitions: processing, completed, failed
- Wallet summary, payout history and wallet transaction history

At most one payout per wallet may be pending or processing. The wallet row
lock serializes concurrent requests and the
``uq_payout_requests_in_flight_wallet`` partial unique index enforces it at
the store level. Cancelled and failed payouts restore the reserved balance
with a compensating positive ``payout`` transaction.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    BelowMinimumPayoutError,
    FeeExceedsAmountError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidStateError,
    LedgerError,
    PayoutInProgressError,
    PayoutNotFoundError,
    WalletNotFoundError,
)
from app.models.transaction import Transaction, TransactionType
from app.models.wallet import (
    IN_FLIGHT_PAYOUT_STATUSES,
    PayoutRequest,
    PayoutStatus,
    Wallet,
)
from app.schemas.wallet import BankAccount
from app.services.ledger_service import LedgerService
from app.services.notification_service import Notifier, get_notifier
from app.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS = 10
RECENT_PAYOUTS = 5


class PayoutService:
    """Service for seller payouts."""

    def __init__(self, db: AsyncSession, notifier: Optional[Notifier] = None):
        """Initialize the payout service.

        Args:
            db: Database session (the ledger store)
            notifier: Notification sink used after commit
        """
        self.db = db
        self.ledger = LedgerService(db)
        self.notifier = notifier or get_notifier()

    async def request_payout(
        self,
        seller_id: int,
        amount: int,
        bank: BankAccount,
    ) -> PayoutRequest:
        """Withdraw wallet balance to a bank account.

        Checks, in order: minimum amount, wallet exists, balance covers the
        amount, the fee leaves a positive net amount, no payout in flight.

        Args:
            seller_id: The seller's user ID
            amount: Amount to withdraw (JPY), fee included
            bank: Destination account

        Returns:
            The pending PayoutRequest

        Raises:
            BelowMinimumPayoutError: Amount below ``PAYOUT_MINIMUM_AMOUNT``
            WalletNotFoundError: Seller has no wallet
            InsufficientBalanceError: Balance lower than amount
            FeeExceedsAmountError: Fee consumes the whole amount
            PayoutInProgressError: Another payout is pending or processing
            LedgerError: Ledger write failed and was rolled back
        """
        minimum = settings.PAYOUT_MINIMUM_AMOUNT
        fee = settings.PAYOUT_BANK_TRANSFER_FEE

        if amount < minimum:
            raise BelowMinimumPayoutError(amount, minimum)

        try:
            wallet = await self.ledger.get_wallet(seller_id, lock=True)
            if wallet is None:
                raise WalletNotFoundError(seller_id)
            wallet_id = wallet.id

            if wallet.balance < amount:
                raise InsufficientBalanceError(required=amount, available=wallet.balance)

            net_amount = amount - fee
            if net_amount <= 0:
                raise FeeExceedsAmountError(amount, fee)

            in_flight = await self._find_in_flight(wallet_id)
            if in_flight is not None:
                raise PayoutInProgressError(in_flight.id)

            # Reserve the funds; the condition re-checks the balance in the store
            result = await self.db.execute(
                update(Wallet)
                .where(Wallet.id == wallet_id, Wallet.balance >= amount)
                .values(
                    balance=Wallet.balance - amount,
                    total_withdrawn=Wallet.total_withdrawn + amount,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                available = await self.db.scalar(
                    select(Wallet.balance).where(Wallet.id == wallet_id)
                )
                raise InsufficientBalanceError(required=amount, available=available or 0)

            payout = PayoutRequest(
                wallet_id=wallet_id,
                amount=amount,
                fee=fee,
                net_amount=net_amount,
                bank_name=bank.bank_name,
                branch_name=bank.branch_name,
                account_type=bank.account_type,
                account_number=bank.account_number,
                account_holder=bank.account_holder,
                status=PayoutStatus.PENDING,
            )
            self.db.add(payout)
            await self.db.flush()
            payout_id = payout.id

            self.db.add(
                Transaction(
                    wallet_id=wallet_id,
                    type=TransactionType.PAYOUT,
                    amount=-amount,
                    description=f"Payout request #{payout_id}",
                    payout_request_id=payout_id,
                )
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Concurrent payout request for seller {seller_id} rejected")
            in_flight_id = await self.db.scalar(
                select(PayoutRequest.id)
                .join(Wallet, PayoutRequest.wallet_id == Wallet.id)
                .where(
                    Wallet.user_id == seller_id,
                    PayoutRequest.status.in_(IN_FLIGHT_PAYOUT_STATUSES),
                )
            )
            raise PayoutInProgressError(in_flight_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Payout request failed and was rolled back: seller={seller_id}, "
                f"amount={amount}, fee={fee}: {e}"
            )
            raise LedgerError("Payout request could not be created", {"seller_id": seller_id})
        except Exception:
            # Release the wallet lock before surfacing the business error
            await self.db.rollback()
            raise

        await self.db.refresh(payout)
        logger.info(
            f"Payout {payout_id} requested: seller={seller_id}, amount={amount}, "
            f"net={net_amount}"
        )
        await self._notify(seller_id, payout_id, PayoutStatus.PENDING, net_amount)
        return payout

    async def cancel_payout(self, payout_id: int, seller_id: int) -> PayoutRequest:
        """Cancel a pending payout and restore the reserved balance.

        Raises:
            PayoutNotFoundError: Payout does not exist
            ForbiddenError: Payout belongs to another seller
            InvalidStateError: Payout is no longer pending
        """
        payout, owner_id = await self._load(payout_id)
        if owner_id != seller_id:
            raise ForbiddenError(
                "You can only cancel your own payout requests", {"payout_id": payout_id}
            )
        if payout.status != PayoutStatus.PENDING:
            raise InvalidStateError(
                f"Only pending payouts can be cancelled (status: {payout.status.value})",
                {"payout_id": payout_id, "status": payout.status.value},
            )

        return await self._restore_balance(
            payout_id,
            owner_id,
            from_statuses=(PayoutStatus.PENDING,),
            to_status=PayoutStatus.CANCELLED,
            description=f"Payout request #{payout_id} cancelled",
        )

    async def mark_payout_processing(self, payout_id: int) -> PayoutRequest:
        """Back office picked up the payout."""
        return await self._transition(
            payout_id, (PayoutStatus.PENDING,), PayoutStatus.PROCESSING
        )

    async def mark_payout_completed(self, payout_id: int) -> PayoutRequest:
        """Bank transfer went through."""
        return await self._transition(
            payout_id, (PayoutStatus.PROCESSING,), PayoutStatus.COMPLETED
        )

    async def mark_payout_failed(self, payout_id: int, reason: str) -> PayoutRequest:
        """Bank transfer failed; the reserved balance goes back to the wallet.

        Raises:
            PayoutNotFoundError: Payout does not exist
            InvalidStateError: Payout already completed, failed or cancelled
        """
        payout, owner_id = await self._load(payout_id)
        if payout.status not in IN_FLIGHT_PAYOUT_STATUSES:
            raise InvalidStateError(
                f"Payout is already {payout.status.value}",
                {"payout_id": payout_id, "status": payout.status.value},
            )
        return await self._restore_balance(
            payout_id,
            owner_id,
            from_statuses=IN_FLIGHT_PAYOUT_STATUSES,
            to_status=PayoutStatus.FAILED,
            description=f"Payout request #{payout_id} failed: {reason}"[:255],
            failure_reason=reason,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_payout_history(
        self,
        seller_id: int,
        limit: int = 20,
        status: Optional[PayoutStatus] = None,
    ) -> list[PayoutRequest]:
        """Payout requests for a seller, newest first."""
        query = (
            select(PayoutRequest)
            .join(Wallet, PayoutRequest.wallet_id == Wallet.id)
            .where(Wallet.user_id == seller_id)
        )
        if status:
            query = query.where(PayoutRequest.status == status)
        result = await self.db.execute(
            query.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get_wallet_transactions(
        self,
        seller_id: int,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
    ) -> tuple[list[Transaction], int]:
        """Get wallet transaction history for a seller.

        Args:
            seller_id: The seller's user ID
            limit: Maximum number of transactions to return
            offset: Offset for pagination
            transaction_type: Optional filter by transaction type

        Returns:
            Tuple of (list of transactions, total count)
        """
        base_query = (
            select(Transaction)
            .join(Wallet, Transaction.wallet_id == Wallet.id)
            .where(Wallet.user_id == seller_id)
        )
        if transaction_type:
            base_query = base_query.where(Transaction.type == transaction_type)

        # Get total count
        count_query = select(func.count()).select_from(base_query.subquery())
        total = await self.db.scalar(count_query) or 0

        # Get paginated results
        query = (
            base_query
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_wallet_summary(self, seller_id: int) -> dict:
        """Balances, withdrawability and recent activity for a seller.

        A seller without a wallet gets an all-zero summary.
        """
        fee = settings.PAYOUT_BANK_TRANSFER_FEE
        minimum = settings.PAYOUT_MINIMUM_AMOUNT

        wallet = await self.ledger.get_wallet(seller_id)
        credits = await self.ledger.get_credits(seller_id)

        transactions: list[Transaction] = []
        payouts: list[PayoutRequest] = []
        in_flight = None
        if wallet is not None:
            transactions, _ = await self.get_wallet_transactions(seller_id, limit=RECENT_TRANSACTIONS)
            payouts = await self.get_payout_history(seller_id, limit=RECENT_PAYOUTS)
            in_flight = await self._find_in_flight(wallet.id)

        balance = wallet.balance if wallet else 0
        return {
            "balance": balance,
            "pending_balance": wallet.pending_balance if wallet else 0,
            "total_earned": wallet.total_earned if wallet else 0,
            "total_withdrawn": wallet.total_withdrawn if wallet else 0,
            "withdrawable_amount": max(0, balance - fee),
            "can_withdraw": balance >= minimum and balance > fee and in_flight is None,
            "credits": credits,
            "in_flight_payout": in_flight,
            "recent_transactions": transactions,
            "recent_payouts": payouts,
            "payout_settings": {
                "minimum_amount": minimum,
                "bank_transfer_fee": fee,
                "processing_days": settings.PAYOUT_PROCESSING_DAYS,
            },
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _find_in_flight(self, wallet_id: int) -> Optional[PayoutRequest]:
        result = await self.db.execute(
            select(PayoutRequest).where(
                PayoutRequest.wallet_id == wallet_id,
                PayoutRequest.status.in_(IN_FLIGHT_PAYOUT_STATUSES),
            )
        )
        return result.scalars().first()

    async def _load(self, payout_id: int) -> tuple[PayoutRequest, int]:
        result = await self.db.execute(
            select(PayoutRequest, Wallet.user_id)
            .join(Wallet, PayoutRequest.wallet_id == Wallet.id)
            .where(PayoutRequest.id == payout_id)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            raise PayoutNotFoundError(payout_id)
        return row[0], row[1]

    async def _transition(
        self,
        payout_id: int,
        from_statuses: Sequence[PayoutStatus],
        to_status: PayoutStatus,
    ) -> PayoutRequest:
        payout, owner_id = await self._load(payout_id)
        current_status = payout.status
        values = {"status": to_status}
        if to_status == PayoutStatus.COMPLETED:
            values["processed_at"] = utcnow()

        try:
            result = await self.db.execute(
                update(PayoutRequest)
                .where(PayoutRequest.id == payout_id, PayoutRequest.status.in_(from_statuses))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise InvalidStateError(
                    f"Payout cannot move to {to_status.value} from {current_status.value}",
                    {"payout_id": payout_id, "status": current_status.value},
                )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Payout {payout_id} transition to {to_status.value} failed: {e}")
            raise LedgerError("Payout status could not be updated", {"payout_id": payout_id})

        logger.info(f"Payout {payout_id} -> {to_status.value}")
        payout, _ = await self._load(payout_id)
        await self._notify(owner_id, payout_id, to_status, payout.net_amount)
        return payout

    async def _restore_balance(
        self,
        payout_id: int,
        owner_id: int,
        from_statuses: Sequence[PayoutStatus],
        to_status: PayoutStatus,
        description: str,
        failure_reason: Optional[str] = None,
    ) -> PayoutRequest:
        """Close a payout and credit its amount back to the wallet, atomically."""
        values = {"status": to_status, "processed_at": utcnow()}
        if failure_reason is not None:
            values["failure_reason"] = failure_reason[:500]

        try:
            # Lock the wallet before the payout row, in the same order as request_payout
            wallet = await self.ledger.get_wallet(owner_id, lock=True)
            result = await self.db.execute(
                update(PayoutRequest)
                .where(PayoutRequest.id == payout_id, PayoutRequest.status.in_(from_statuses))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise InvalidStateError(
                    f"Payout #{payout_id} changed state concurrently",
                    {"payout_id": payout_id},
                )

            amount = await self.db.scalar(
                select(PayoutRequest.amount).where(PayoutRequest.id == payout_id)
            )
            wallet_id = wallet.id
            await self.db.execute(
                update(Wallet)
                .where(Wallet.id == wallet_id)
                .values(
                    balance=Wallet.balance + amount,
                    total_withdrawn=Wallet.total_withdrawn - amount,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.add(
                Transaction(
                    wallet_id=wallet_id,
                    type=TransactionType.PAYOUT,
                    amount=amount,
                    description=description,
                    payout_request_id=payout_id,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Restoring balance for payout {payout_id} ({to_status.value}) failed "
                f"and was rolled back: seller={owner_id}: {e}"
            )
            raise LedgerError("Payout could not be updated", {"payout_id": payout_id})

        logger.info(
            f"Payout {payout_id} {to_status.value}: {amount} returned to wallet of "
            f"seller {owner_id}"
        )
        payout, _ = await self._load(payout_id)
        await self._notify(owner_id, payout_id, to_status, payout.net_amount)
        return payout

    async def _notify(
        self,
        seller_id: int,
        payout_id: int,
        status: PayoutStatus,
        net_amount: int,
    ) -> None:
        try:
            await self.notifier.payout_status_changed(
                seller_id, payout_id, status.value, net_amount
            )
        except Exception as e:
            logger.warning(f"Payout notification for payout {payout_id} failed: {e}")


def get_payout_service(
    db: AsyncSession,
    notifier: Optional[Notifier] = None,
) -> PayoutService:
    """Factory function to create PayoutService.

    Args:
        db: Database session
        notifier: Optional notification sink

    Returns:
        Configured PayoutService instance
    """
    return PayoutService(db, notifier=notifier)
