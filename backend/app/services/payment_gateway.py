"""Shared contract for external payment processor gateways.

A gateway wraps one processor's API: creating a hosted checkout, looking up
its outcome, and refunding a captured payment. Every call is bounded by a
timeout and every processor failure surfaces as ``ProcessorError``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, TypeVar

from app.core.exceptions import ProcessorError
from app.models.purchase import PaymentProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CheckoutSession:
    """A hosted checkout created with the processor."""

    session_id: str
    redirect_url: str
    expires_at: Optional[int] = None


@dataclass
class SessionStatus:
    """Outcome of a checkout as reported by the processor."""

    session_id: str
    paid: bool
    open: bool = False
    payment_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckoutRequest:
    """Everything a processor needs to open a checkout for one purchase."""

    purchase_id: int
    prompt_id: int
    buyer_id: int
    seller_id: int
    price: int
    title: str
    description: Optional[str] = None

    @property
    def metadata(self) -> dict[str, str]:
        # Processors only accept string metadata values
        return {
            "purchase_id": str(self.purchase_id),
            "prompt_id": str(self.prompt_id),
            "buyer_id": str(self.buyer_id),
            "seller_id": str(self.seller_id),
            "price": str(self.price),
        }


class PaymentGateway:
    """Base class for processor gateways."""

    provider: PaymentProvider

    def __init__(self, timeout: float):
        self.timeout = timeout

    async def create_checkout(
        self,
        request: CheckoutRequest,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        raise NotImplementedError

    async def get_session_status(self, session_id: str) -> SessionStatus:
        raise NotImplementedError

    async def refund_payment(self, payment_id: str, amount: int) -> Optional[str]:
        raise NotImplementedError

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a processor call, converting a timeout into ProcessorError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"{self.provider.value} {operation} timed out after {self.timeout}s"
            )
            raise ProcessorError(
                f"The payment processor did not respond in time ({operation})",
                {"provider": self.provider.value, "operation": operation},
            )
