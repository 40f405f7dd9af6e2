"""Pydantic schemas for API requests and responses."""

from app.schemas.credits import BonusResponse, CreditHistoryResponse, CreditSummaryResponse
from app.schemas.purchase import (
    CheckoutRequest,
    CheckoutResponse,
    RefundEligibilityResponse,
    RefundRequest,
    RefundResponse,
)
from app.schemas.result_log import (
    MetricSummary,
    ResultLogCreate,
    ResultLogCreateResponse,
    ResultLogListResponse,
    ResultLogResponse,
)
from app.schemas.wallet import (
    BankAccount,
    PayoutCreateRequest,
    PayoutListResponse,
    PayoutResponse,
    PayoutSettingsResponse,
    WalletSummaryResponse,
    WalletTransactionHistoryResponse,
    WalletTransactionResponse,
)

__all__ = [
    # Credits
    "CreditHistoryResponse",
    "CreditSummaryResponse",
    "BonusResponse",
    # Purchases
    "CheckoutRequest",
    "CheckoutResponse",
    "RefundRequest",
    "RefundResponse",
    "RefundEligibilityResponse",
    # Result logs
    "ResultLogCreate",
    "ResultLogResponse",
    "ResultLogCreateResponse",
    "ResultLogListResponse",
    "MetricSummary",
    # Wallet
    "BankAccount",
    "PayoutCreateRequest",
    "PayoutResponse",
    "PayoutListResponse",
    "PayoutSettingsResponse",
    "WalletSummaryResponse",
    "WalletTransactionResponse",
    "WalletTransactionHistoryResponse",
]
