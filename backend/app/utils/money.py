"""Money arithmetic shared by every settlement path."""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Optional

from app.core.config import settings


def seller_share(price: int, rate: Optional[float] = None) -> int:
    """Seller's revenue share of a price, rounded down to a whole yen.

    Computed in Decimal so that e.g. ``floor(500 * 0.8)`` is 400, not 399.

    Args:
        price: Purchase price in JPY (credits)
        rate: Override for ``CREATOR_REVENUE_RATE``

    Returns:
        floor(price * rate)
    """
    if price <= 0:
        return 0
    effective_rate = settings.CREATOR_REVENUE_RATE if rate is None else rate
    share = (Decimal(price) * Decimal(str(effective_rate))).to_integral_value(
        rounding=ROUND_FLOOR
    )
    return int(share)


def platform_fee(price: int, rate: Optional[float] = None) -> int:
    """Platform's share: whatever the seller does not receive."""
    return max(0, price) - seller_share(price, rate)


def jpy_to_usdc(amount_jpy: int, rate: Optional[float] = None) -> Decimal:
    """Convert a JPY price to USDC, rounded to cents.

    >>> jpy_to_usdc(1000, 0.0067)
    Decimal('6.70')
    """
    effective_rate = settings.JPY_TO_USDC_RATE if rate is None else rate
    return (Decimal(amount_jpy) * Decimal(str(effective_rate))).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
