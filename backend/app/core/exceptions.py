"""Domain error taxonomy for settlement, refunds, payouts and result logs.

Every error carries a human-readable ``message`` and a ``details`` dict with
the context a caller needs to act on it (shortfall, days remaining, ...).
Routers translate these into HTTP responses via ``code`` and ``status_code``.
"""

from typing import Any, Optional


class MarketplaceError(Exception):
    """Base exception for all marketplace business errors."""

    code: str = "MARKETPLACE_ERROR"
    status_code: int = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


# ============================================================================
# Not found
# ============================================================================


class NotFoundError(MarketplaceError):
    code = "NOT_FOUND"
    status_code = 404


class PromptNotFoundError(NotFoundError):
    def __init__(self, prompt_id: int) -> None:
        super().__init__(f"Prompt {prompt_id} not found", {"prompt_id": prompt_id})


class NotPublishedError(NotFoundError):
    """The prompt exists but is not published, so it cannot be bought."""

    code = "NOT_PUBLISHED"

    def __init__(self, prompt_id: int) -> None:
        super().__init__(
            f"Prompt {prompt_id} is not published", {"prompt_id": prompt_id}
        )


class PurchaseNotFoundError(NotFoundError):
    def __init__(self, purchase_id: int) -> None:
        super().__init__(
            f"Purchase {purchase_id} not found", {"purchase_id": purchase_id}
        )


class WalletNotFoundError(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"No wallet for user {user_id}", {"user_id": user_id})


class PayoutNotFoundError(NotFoundError):
    def __init__(self, payout_id: int) -> None:
        super().__init__(
            f"Payout request {payout_id} not found", {"payout_id": payout_id}
        )


# ============================================================================
# Forbidden
# ============================================================================


class ForbiddenError(MarketplaceError):
    code = "FORBIDDEN"
    status_code = 403


class SelfPurchaseForbiddenError(ForbiddenError):
    code = "SELF_PURCHASE_FORBIDDEN"

    def __init__(self, prompt_id: int) -> None:
        super().__init__(
            "You cannot purchase your own prompt", {"prompt_id": prompt_id}
        )


# ============================================================================
# Conflict
# ============================================================================


class ConflictError(MarketplaceError):
    code = "CONFLICT"
    status_code = 409


class AlreadyPurchasedError(ConflictError):
    code = "ALREADY_PURCHASED"

    def __init__(self, user_id: int, prompt_id: int) -> None:
        super().__init__(
            "You already own this prompt or have a payment in progress for it",
            {"user_id": user_id, "prompt_id": prompt_id},
        )


class PayoutInProgressError(ConflictError):
    code = "PAYOUT_IN_PROGRESS"

    def __init__(self, payout_id: int) -> None:
        super().__init__(
            "A payout request is already being processed. "
            "Please wait until it completes before requesting another.",
            {"payout_id": payout_id},
        )


class InvalidStateError(ConflictError):
    code = "INVALID_STATE"


# ============================================================================
# Invalid input
# ============================================================================


class InvalidInputError(MarketplaceError):
    code = "INVALID_INPUT"
    status_code = 400


class UnsupportedProviderError(InvalidInputError):
    code = "UNSUPPORTED_PROVIDER"

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Unsupported payment provider: {provider}", {"provider": provider}
        )


class BelowMinimumPayoutError(InvalidInputError):
    code = "BELOW_MINIMUM_PAYOUT"

    def __init__(self, amount: int, minimum: int) -> None:
        super().__init__(
            f"Payouts start at {minimum:,} JPY (requested {amount:,})",
            {"amount": amount, "minimum_amount": minimum},
        )


class FeeExceedsAmountError(InvalidInputError):
    code = "FEE_EXCEEDS_AMOUNT"

    def __init__(self, amount: int, fee: int) -> None:
        super().__init__(
            f"Payout amount {amount:,} does not cover the transfer fee of {fee:,}",
            {"amount": amount, "fee": fee},
        )


class MetricRejectedError(InvalidInputError):
    code = "METRIC_REJECTED"


# ============================================================================
# Insufficient funds
# ============================================================================


class InsufficientFundsError(MarketplaceError):
    """Raised when a credit balance cannot cover a debit."""

    code = "INSUFFICIENT_FUNDS"
    status_code = 402

    def __init__(self, required: int, available: int, message: Optional[str] = None) -> None:
        self.required = required
        self.available = available
        self.shortfall = max(0, required - available)
        super().__init__(
            message
            or (
                f"Insufficient credits: required {required:,}, "
                f"available {available:,} (short by {self.shortfall:,})"
            ),
            {"required": required, "available": available, "shortfall": self.shortfall},
        )


class InsufficientBalanceError(InsufficientFundsError):
    """Raised when a wallet balance cannot cover a payout."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            required,
            available,
            f"Insufficient wallet balance: requested {required:,}, "
            f"balance {available:,}",
        )


# ============================================================================
# Refunds
# ============================================================================


class NotRefundableError(MarketplaceError):
    code = "NOT_REFUNDABLE"
    status_code = 400


# ============================================================================
# External processors and internal failures
# ============================================================================


class ProcessorError(MarketplaceError):
    """The external payment processor rejected or failed the request."""

    code = "PROCESSOR_ERROR"
    status_code = 502


class ProcessorUnavailableError(ProcessorError):
    """The requested payment rail is not configured on this deployment."""

    code = "PROCESSOR_UNAVAILABLE"
    status_code = 503

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Payments via {provider} are currently unavailable",
            {"provider": provider},
        )


class LedgerError(MarketplaceError):
    """An atomic ledger mutation failed and was rolled back."""

    code = "INTERNAL_ERROR"
    status_code = 500
