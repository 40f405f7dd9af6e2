"""Pydantic schemas for wallet and payout endpoints.

This module defines request and response models for:
- Wallet summary
- Wallet transaction history
- Payout requests (create, list, cancel)
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.transaction import TransactionType
from app.models.wallet import AccountType, PayoutStatus


class BankAccount(BaseModel):
    """Japanese bank transfer destination."""

    bank_name: str = Field(min_length=1, max_length=100, description="Bank name")
    branch_name: str = Field(min_length=1, max_length=100, description="Branch name")
    account_type: AccountType = Field(description="ordinary (futsu) or checking (toza)")
    account_number: str = Field(description="7-digit account number")
    account_holder: str = Field(
        min_length=1, max_length=100, description="Account holder name (katakana)"
    )

    @field_validator("account_number")
    @classmethod
    def validate_account_number(cls, v: str) -> str:
        """Account numbers are exactly seven digits."""
        v = v.strip()
        if len(v) != 7 or not v.isdigit():
            raise ValueError("Account number must be exactly 7 digits")
        return v


class PayoutCreateRequest(BankAccount):
    """Request model for a new payout."""

    amount: int = Field(gt=0, description="Amount to withdraw (JPY)")


class PayoutResponse(BaseModel):
    """Response model for a payout request."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="Payout request ID")
    amount: int = Field(description="Amount withdrawn from the wallet (JPY)")
    fee: int = Field(description="Bank transfer fee (JPY)")
    net_amount: int = Field(description="Amount transferred to the bank (JPY)")
    status: PayoutStatus = Field(description="Payout status")
    bank_name: str
    branch_name: str
    account_type: AccountType
    account_number: str
    account_holder: str
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class PayoutListResponse(BaseModel):
    payouts: list[PayoutResponse]


class WalletTransactionResponse(BaseModel):
    """Response model for a single wallet transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="Transaction ID")
    type: TransactionType = Field(description="Transaction type")
    amount: int = Field(description="Balance change (positive=add, negative=deduct)")
    description: Optional[str] = None
    purchase_id: Optional[int] = None
    payout_request_id: Optional[int] = None
    created_at: datetime = Field(description="Transaction timestamp")


class WalletTransactionHistoryResponse(BaseModel):
    """Response model for wallet transaction history queries."""

    transactions: list[WalletTransactionResponse] = Field(description="List of transactions")
    total: int = Field(description="Total number of transactions")
    limit: int = Field(description="Page size limit")
    offset: int = Field(description="Current offset")


class PayoutSettingsResponse(BaseModel):
    minimum_amount: int
    bank_transfer_fee: int
    processing_days: int


class WalletSummaryResponse(BaseModel):
    """Response model for the seller wallet summary."""

    balance: int = Field(description="Withdrawable balance (JPY)")
    pending_balance: int = Field(description="Revenue still inside the refund window")
    total_earned: int
    total_withdrawn: int
    withdrawable_amount: int = Field(description="Balance minus the transfer fee")
    can_withdraw: bool
    credits: int = Field(description="Credits balance")
    in_flight_payout: Optional[PayoutResponse] = None
    recent_transactions: list[WalletTransactionResponse]
    recent_payouts: list[PayoutResponse]
    payout_settings: PayoutSettingsResponse
