"""Wallet transaction model for seller revenue and payout tracking."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base, enum_values


class TransactionType(str, enum.Enum):
    """Transaction types for wallet operations."""

    PURCHASE_REVENUE = "purchase_revenue"  # Seller share of an externally paid purchase
    PAYOUT = "payout"  # Withdrawal reservation (negative) or its reversal (positive)
    REFUND = "refund"  # Revenue clawed back when a purchase is refunded


class Transaction(Base):
    """
    Immutable audit log for all wallet operations.

    This table is append-only. Never UPDATE or DELETE records.
    For every wallet, sum(amount) equals ``balance + pending_balance``.
    """

    __tablename__ = "wallet_transactions"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Foreign key to wallet
    wallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Transaction details
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="wallettransactiontype", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive for add, negative for deduct
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # External references
    purchase_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("purchases.id", ondelete="SET NULL"), nullable=True, index=True
    )
    payout_request_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("payout_requests.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="transactions")

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, type={self.type.value}, amount={self.amount})>"
