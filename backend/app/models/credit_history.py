"""Credit history model: the append-only ledger behind ``User.credits``."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base, enum_values


class CreditHistoryType(str, enum.Enum):
    """Reasons a credits balance can change."""

    BONUS = "bonus"  # Daily bonus, referral reward, promotion
    PURCHASE = "purchase"  # Buyer debit (or zero-amount audit row for card payments)
    SALE = "sale"  # Seller revenue share
    EXECUTION = "execution"  # Prompt execution cost
    REFUND = "refund"  # Refund credit to buyer / clawback from seller


class CreditHistory(Base):
    """
    Immutable audit log for all credit operations.

    This table is append-only. Never UPDATE or DELETE records.
    For every user, sum(amount) equals ``User.credits``.
    """

    __tablename__ = "credit_history"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Foreign key to user
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Entry details
    type: Mapped[CreditHistoryType] = mapped_column(
        Enum(CreditHistoryType, name="credithistorytype", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive for credit, negative for debit
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Originating purchase, when there is one
    purchase_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("purchases.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="credit_history")

    def __repr__(self) -> str:
        return f"<CreditHistory(id={self.id}, type={self.type.value}, amount={self.amount})>"
