"""Prompt model (the product being sold)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base


class Prompt(Base):
    """A published AI prompt listed for sale.

    Only the fields the settlement engine reads are modelled here; listing,
    versioning and content live with the catalogue.
    """

    __tablename__ = "prompts"
    __table_args__ = (CheckConstraint("price_jpy >= 0", name="ck_prompts_price_non_negative"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    owner_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    short_description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    price_jpy: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    owner: Mapped["User"] = relationship("User", back_populates="prompts")

    @property
    def is_free(self) -> bool:
        return self.price_jpy == 0

    def __repr__(self) -> str:
        return f"<Prompt(id={self.id}, price_jpy={self.price_jpy}, published={self.is_published})>"
