"""Result log model for self-reported prompt outcome metrics."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base, enum_values


class MetricType(str, enum.Enum):
    """Kinds of outcome a user can report for a prompt."""

    TIME_SAVED = "time_saved"
    REVENUE = "revenue"
    QUALITY = "quality"
    OTHER = "other"


class ResultLog(Base):
    """
    An outcome metric reported by a prompt's user.

    Rows are immutable. ``is_flagged`` is decided once at creation from the
    metric validator and anomaly detector; flagged rows stay stored but are
    excluded from summaries and from the anomaly baseline.
    """

    __tablename__ = "result_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prompt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    metric_type: Mapped[MetricType] = mapped_column(
        Enum(MetricType, name="metrictype", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    metric_value: Mapped[float] = mapped_column(Float, nullable=False)
    metric_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    flag_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<ResultLog(id={self.id}, prompt={self.prompt_id}, "
            f"{self.metric_type.value}={self.metric_value}{self.metric_unit}, "
            f"flagged={self.is_flagged})>"
        )
