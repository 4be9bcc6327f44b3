"""
Pricing Service Package
"""

from app.services.pricing.service import (
    ResolvedPurchase,
    parse_payment_type,
    resolve_purchase,
    set_subscription_price,
)

__all__ = [
    "ResolvedPurchase",
    "parse_payment_type",
    "resolve_purchase",
    "set_subscription_price",
]
