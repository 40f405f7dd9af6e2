"""Purchase model: one buyer acquiring one prompt."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base, enum_values


ACTIVE_PURCHASE_INDEX = "uq_purchases_active_user_prompt"


class PurchaseStatus(str, enum.Enum):
    """Purchase lifecycle.

    State transitions:
    - PENDING -> COMPLETED (processor confirmed payment)
    - PENDING -> FAILED (processor reported failure, or checkout expired)
    - COMPLETED -> REFUNDED (once, inside the refund window)
    Credit-rail purchases are created directly as COMPLETED.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentProvider(str, enum.Enum):
    """Payment rails a purchase can settle through."""

    CREDITS = "credits"  # Internal credits, settled synchronously
    STRIPE = "stripe"  # Card payment via Stripe Checkout
    ORYNTH = "orynth"  # USDC payment via Orynth


# Statuses that occupy the (user, prompt) slot
ACTIVE_PURCHASE_STATUSES = (PurchaseStatus.PENDING, PurchaseStatus.COMPLETED)


class Purchase(Base):
    """
    A buyer's purchase of a prompt.

    ``price_at_purchase`` and ``seller_id`` are snapshots taken when the
    purchase is created; later price or ownership changes never affect them.
    At most one pending-or-completed purchase may exist per (user, prompt),
    enforced by a partial unique index.
    """

    __tablename__ = "purchases"
    __table_args__ = (
        Index(
            ACTIVE_PURCHASE_INDEX,
            "user_id",
            "prompt_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'completed')"),
            sqlite_where=text("status IN ('pending', 'completed')"),
        ),
        CheckConstraint("price_at_purchase >= 0", name="ck_purchases_price_non_negative"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Parties
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prompt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    seller_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Settlement details
    price_at_purchase: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PurchaseStatus] = mapped_column(
        Enum(PurchaseStatus, name="purchasestatus", values_callable=enum_values),
        default=PurchaseStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_provider: Mapped[PaymentProvider] = mapped_column(
        Enum(PaymentProvider, name="paymentprovider", values_callable=enum_values),
        default=PaymentProvider.CREDITS,
        nullable=False,
    )

    # External processor correlation
    processor_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )  # Checkout session / payment request id
    processor_payment_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )  # Payment intent / on-chain tx id

    # Refund details
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refund_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    clawback_shortfall: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )  # Seller revenue that could not be recovered on refund

    # Wallet revenue release (pending -> withdrawable)
    revenue_released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # Relationships
    prompt: Mapped["Prompt"] = relationship("Prompt")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PURCHASE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Purchase(id={self.id}, user={self.user_id}, prompt={self.prompt_id}, "
            f"status={self.status.value}, provider={self.payment_provider.value})>"
        )
