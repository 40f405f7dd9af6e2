"""Seller wallet and payout request models."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base, enum_values


class Wallet(Base):
    """
    Seller holding account for revenue earned through external payment rails.

    ``pending_balance`` holds revenue inside the refund window; the release
    sweep moves it to the withdrawable ``balance`` once the window closes.
    """

    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_wallets_pending_non_negative"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Owner (one wallet per seller)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Balances (JPY)
    balance: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    pending_balance: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    total_earned: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    total_withdrawn: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="wallet")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="wallet", cascade="all, delete-orphan"
    )
    payout_requests: Mapped[list["PayoutRequest"]] = relationship(
        "PayoutRequest", back_populates="wallet", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<Wallet(user_id={self.user_id}, balance={self.balance}, "
            f"pending={self.pending_balance})>"
        )


class PayoutStatus(str, enum.Enum):
    """Payout request lifecycle.

    State transitions:
    - PENDING -> PROCESSING (back office picked it up)
    - PROCESSING -> COMPLETED / FAILED
    - PENDING -> CANCELLED (seller withdrew the request)
    FAILED and CANCELLED both restore the reserved balance.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses that block a new payout request for the same wallet
IN_FLIGHT_PAYOUT_STATUSES = (PayoutStatus.PENDING, PayoutStatus.PROCESSING)


class AccountType(str, enum.Enum):
    """Japanese bank account types."""

    ORDINARY = "ordinary"  # futsu
    CHECKING = "checking"  # toza


class PayoutRequest(Base):
    """A seller's withdrawal of wallet balance to a bank account."""

    __tablename__ = "payout_requests"
    __table_args__ = (
        Index(
            "uq_payout_requests_in_flight_wallet",
            "wallet_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
        CheckConstraint("amount > 0", name="ck_payout_requests_amount_positive"),
        CheckConstraint("net_amount > 0", name="ck_payout_requests_net_positive"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    wallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Amounts (JPY)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    fee: Mapped[int] = mapped_column(Integer, nullable=False)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    # Bank destination
    bank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    branch_name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(
        Enum(AccountType, name="bankaccounttype", values_callable=enum_values),
        nullable=False,
    )
    account_number: Mapped[str] = mapped_column(String(7), nullable=False)
    account_holder: Mapped[str] = mapped_column(String(100), nullable=False)

    # Processing state
    status: Mapped[PayoutStatus] = mapped_column(
        Enum(PayoutStatus, name="payoutstatus", values_callable=enum_values),
        default=PayoutStatus.PENDING,
        nullable=False,
        index=True,
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # Relationships
    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="payout_requests")

    def __repr__(self) -> str:
        return (
            f"<PayoutRequest(id={self.id}, amount={self.amount}, "
            f"status={self.status.value})>"
        )
