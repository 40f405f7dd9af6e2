"""SQLAlchemy models for the prompt marketplace ledger."""

from app.models.credit_history import CreditHistory, CreditHistoryType
from app.models.notification import Notification, NotificationType
from app.models.prompt import Prompt
from app.models.purchase import (
    ACTIVE_PURCHASE_STATUSES,
    PaymentProvider,
    Purchase,
    PurchaseStatus,
)
from app.models.result_log import MetricType, ResultLog
from app.models.transaction import Transaction, TransactionType
from app.models.user import User
from app.models.wallet import (
    IN_FLIGHT_PAYOUT_STATUSES,
    AccountType,
    PayoutRequest,
    PayoutStatus,
    Wallet,
)

__all__ = [
    "User",
    "Prompt",
    "Purchase",
    "PurchaseStatus",
    "PaymentProvider",
    "ACTIVE_PURCHASE_STATUSES",
    "CreditHistory",
    "CreditHistoryType",
    "Wallet",
    "Transaction",
    "TransactionType",
    "PayoutRequest",
    "PayoutStatus",
    "AccountType",
    "IN_FLIGHT_PAYOUT_STATUSES",
    "ResultLog",
    "MetricType",
    "Notification",
    "NotificationType",
]
