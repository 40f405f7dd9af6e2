"""Services for handling business logic and external integrations."""

from app.services.ledger_service import LedgerService, get_ledger_service
from app.services.metric_validation import (
    AnomalyDetector,
    AnomalyResult,
    MetricValidation,
    detect_anomaly,
    validate_metric,
)
from app.services.notification_service import (
    ArqNotifier,
    NotificationService,
    Notifier,
    NullNotifier,
    get_notification_service,
    get_notifier,
)
from app.services.payout_service import PayoutService, get_payout_service
from app.services.refund_service import RefundService, get_refund_service
from app.services.result_log_service import ResultLogService, get_result_log_service
from app.services.settlement_service import (
    SettlementResult,
    SettlementService,
    get_payment_gateways,
    get_settlement_service,
)

__all__ = [
    "LedgerService",
    "get_ledger_service",
    "AnomalyDetector",
    "AnomalyResult",
    "MetricValidation",
    "detect_anomaly",
    "validate_metric",
    "Notifier",
    "ArqNotifier",
    "NullNotifier",
    "NotificationService",
    "get_notifier",
    "get_notification_service",
    "PayoutService",
    "get_payout_service",
    "RefundService",
    "get_refund_service",
    "ResultLogService",
    "get_result_log_service",
    "SettlementResult",
    "SettlementService",
    "get_payment_gateways",
    "get_settlement_service",
]
