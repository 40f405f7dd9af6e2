"""Utility functions for the marketplace backend."""

from app.utils.money import jpy_to_usdc, platform_fee, seller_share
from app.utils.timeutil import ensure_utc, utcnow

__all__ = [
    # Money
    "seller_share",
    "platform_fee",
    "jpy_to_usdc",
    # Time
    "utcnow",
    "ensure_utc",
]
