"""Pydantic schemas for the credits endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.credit_history import CreditHistoryType


class CreditHistoryResponse(BaseModel):
    """Response model for a single credit history entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: CreditHistoryType
    amount: int = Field(description="Credit change (positive=add, negative=deduct)")
    description: Optional[str] = None
    purchase_id: Optional[int] = None
    created_at: datetime


class CreditSummaryResponse(BaseModel):
    credits: int = Field(description="Current credits balance")
    history: list[CreditHistoryResponse] = Field(description="Latest history entries")


class BonusResponse(BaseModel):
    credits: int = Field(description="Balance after the bonus")
    granted: int
    message: str
